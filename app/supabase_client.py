import os
import logging
from supabase import create_client, Client
from dotenv import load_dotenv
from jose import jwt, JWTError
from typing import Optional

load_dotenv()

logger = logging.getLogger(__name__)

SUPABASE_URL = os.environ.get("SUPABASE_URL")
SUPABASE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")  # Use service role for backend
SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY")

if not SUPABASE_URL:
    print("Warning: SUPABASE_URL not set. Record store features will be disabled.")
    supabase: Client | None = None
else:
    # Use service role key if available (full access), otherwise anon key
    key_to_use = SUPABASE_KEY or SUPABASE_ANON_KEY
    if key_to_use:
        supabase: Client = create_client(SUPABASE_URL, key_to_use)
    else:
        print("Warning: No Supabase key found. Record store features will be disabled.")
        supabase = None


def get_supabase() -> Client | None:
    """Get the Supabase client instance."""
    return supabase


def verify_supabase_token(token: str) -> Optional[dict]:
    """
    Read the claims of a Supabase JWT and return the user identity.
    Returns None if the token cannot be decoded or carries no email.
    """
    if not token:
        return None

    try:
        decoded = jwt.get_unverified_claims(token)
    except JWTError as decode_error:
        logger.warning(f"[Auth] JWT decode error: {decode_error}")
        return None

    email = decoded.get("email")
    if not email:
        logger.warning("[Auth] No email claim in token")
        return None

    return {
        "id": decoded.get("sub"),
        "email": email,
        "role": decoded.get("role", "authenticated"),
    }


def get_customer_by_email(email: str) -> dict | None:
    """Look up a paying customer by email. Emails are stored lower-cased."""
    client = get_supabase()
    if not client or not email:
        return None

    try:
        response = client.table("customers")\
            .select("*")\
            .eq("email", email.strip().lower())\
            .limit(1)\
            .execute()
        return response.data[0] if response.data else None
    except Exception as e:
        logger.error(f"Error fetching customer {email}: {e}")
        return None


def get_company_by_customer_id(customer_id: str) -> dict | None:
    """Get the company record owned by a customer."""
    client = get_supabase()
    if not client or not customer_id:
        return None

    try:
        response = client.table("companies")\
            .select("*")\
            .eq("customer_id", customer_id)\
            .limit(1)\
            .execute()
        return response.data[0] if response.data else None
    except Exception as e:
        logger.error(f"Error fetching company for customer {customer_id}: {e}")
        return None
