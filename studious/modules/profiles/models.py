# Supabase table: profiles
# Rows are created by the auth signup trigger; this module only reads and edits them

"""
Expected Supabase table structure:

profiles:
- id: uuid (primary key, foreign key to auth.users.id)
- email: text
- full_name: text (nullable)
- avatar_url: text (nullable)
- created_at: timestamp (default: now())
- updated_at: timestamp (default: now())
"""
