"""
Environment configuration for the interviewdesk backend
"""
import os
from pathlib import Path
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

APP_VERSION = "1.0.0"

# MongoDB connection
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'interviewdesk')

# JWT Configuration
JWT_SECRET = os.environ.get('JWT_SECRET', 'interviewdesk-secret-key-change-in-production')
JWT_ALGORITHM = 'HS256'
JWT_EXPIRATION_HOURS = 24

# Embed tokens are short lived and may be signed with their own secret
EMBED_JWT_SECRET = os.environ.get('EMBED_JWT_SECRET') or JWT_SECRET
EMBED_TOKEN_TTL_SECONDS = 7 * 60

API_KEY_SALT = os.environ.get('API_KEY_SALT', 'interviewdesk-api-key-salt')

# External URLs
APP_URL = os.environ.get('APP_URL', 'http://localhost:3000').rstrip('/')
CONDUCTOR_URL = os.environ.get('CONDUCTOR_URL', 'ws://localhost:8787')
BASE_DOMAIN = os.environ.get('BASE_DOMAIN', 'localhost')

# CORS
CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')
ADMIN_API_ALLOWED_ORIGINS = os.environ.get('ADMIN_API_ALLOWED_ORIGINS', '*')

# Email (Resend)
RESEND_API_KEY = os.environ.get('RESEND_API_KEY')
EMAIL_FROM = os.environ.get('EMAIL_FROM', 'noreply@interviewdesk.app')
EMAIL_FROM_NAME = os.environ.get('EMAIL_FROM_NAME', 'InterviewDesk')

# Password reset links
PASSWORD_RESET_TTL_MINUTES = int(os.environ.get('PASSWORD_RESET_TTL_MINUTES', '60'))

# Invitations
INVITE_EXPIRY_DAYS = int(os.environ.get('INVITE_EXPIRY_DAYS', '7'))
BULK_INVITE_EXPIRY_DAYS = int(os.environ.get('BULK_INVITE_EXPIRY_DAYS', '30'))

SKIP_TENANT_CHECK = os.environ.get('SKIP_TENANT_CHECK', '').lower() == 'true'
