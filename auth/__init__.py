"""
auth: user authentication.

Provides:
  • HMAC-signed bearer tokens carrying the user id and role
  • Password hashing (bcrypt)
  • Signup / login API routes
  • ``get_current_user_id`` and ``require_admin`` FastAPI dependencies
"""
