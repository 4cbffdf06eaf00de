"""Doctor and hospital directory app.

Holds the schema shared with the Supabase project and the services and
management commands that import the CSV extract into it.
"""
