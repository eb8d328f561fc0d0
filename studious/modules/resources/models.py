# Supabase table: shared_resources; storage bucket: group-files
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:

shared_resources:
- id: uuid (primary key)
- group_id: uuid (foreign key to groups.id, not null)
- uploaded_by: uuid (foreign key to profiles.id, not null)
- resource_type: text (not null) - values: document, image, video, link
- file_url: text (nullable) - public storage URL, or the link itself
- file_name: text (nullable)
- file_size: bigint (nullable)
- title: text (not null)
- description: text (nullable)
- created_at: timestamp (default: now())

Storage objects live at "<group_id>/<epoch_ms>.<ext>" in the files bucket.
"""
