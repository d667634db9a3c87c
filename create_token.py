"""Print a bearer token for a user id, e.g. ``python create_token.py user-42``."""
import sys

from directory_api.app.core.security import create_access_token

user_id = sys.argv[1] if len(sys.argv) > 1 else "admin"
# lifetime in seconds, here 365 days
token = create_access_token({"sub": user_id}, expires_delta=365 * 24 * 60 * 60)
print(token)
