"""
Registry Service - Tournament registration and approval

Responsibilities:
- Tournament administration (create/update/status)
- Team registration with roster validation
- Admin approval workflow for registrations
- Stateless bearer-token authentication and role checks
- Domain events on Redis after each committed change
"""
