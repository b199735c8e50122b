"""
Institution and institution-user vacations, replaced as whole sets via sync endpoints.
"""
