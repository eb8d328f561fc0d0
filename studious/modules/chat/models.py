# Supabase tables: messages, user_deleted_messages, profiles
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in repository.py

"""
Expected Supabase table structure:

profiles:
- id: uuid (primary key, references auth.users.id)
- email: text (not null)
- full_name: text (nullable)
- avatar_url: text (nullable)
- created_at: timestamp (default: now())
- updated_at: timestamp (default: now())

messages:
- id: uuid (primary key)
- group_id: uuid (foreign key to groups.id, not null)
- sender_id: uuid (foreign key to profiles.id, not null)
- content: text (nullable) - cleared when deleted_at is set
- message_type: text (not null, default: 'text') - values: text, file, link
- file_url: text (nullable)
- file_name: text (nullable)
- file_type: text (nullable) - MIME type
- file_size: bigint (nullable)
- created_at: timestamp (default: now())
- deleted_at: timestamp (nullable) - "deleted for everyone" marker
- RLS: update allowed only where sender_id = auth.uid()
- Realtime publication enabled (INSERT, UPDATE)

user_deleted_messages:
- id: uuid (primary key)
- message_id: uuid (foreign key to messages.id, not null)
- user_id: uuid (foreign key to profiles.id, not null)
- created_at: timestamp (default: now())
- unique constraint on (message_id, user_id)
"""
