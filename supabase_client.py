# supabase_client.py
import os
from functools import lru_cache

from dotenv import load_dotenv
from supabase import create_client, Client

load_dotenv()


def new_client() -> Client:
    """
    A client of its own, e.g. for one user's auth session.
    """
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_KEY")

    if not url or not key:
        raise RuntimeError("Set SUPABASE_URL and SUPABASE_KEY in .env or environment variables")

    return create_client(url, key)


@lru_cache(maxsize=1)
def get_client() -> Client:
    """
    Process-wide client for table access. Never sign in on this one.
    """
    return new_client()


def get_schema() -> str:
    return os.getenv("SCHEMA") or "public"
