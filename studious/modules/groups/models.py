# Supabase tables: groups, group_members
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:

groups:
- id: uuid (primary key)
- name: text (not null)
- description: text (nullable)
- avatar_url: text (nullable)
- created_by: uuid (foreign key to profiles.id, not null) - creator, always admin-equivalent
- invite_code: text (not null, unique) - stored upper-case
- created_at: timestamp (default: now())
- updated_at: timestamp (default: now())

group_members:
- id: uuid (primary key)
- group_id: uuid (foreign key to groups.id, not null)
- user_id: uuid (foreign key to profiles.id, not null)
- role: text (not null, default: 'member') - values: admin, member
- joined_at: timestamp (default: now())
- unique constraint on (group_id, user_id)

Deleting a group removes, in order: messages, shared_resources,
group_members, groups.
"""
