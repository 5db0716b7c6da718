# config.py

import os
from dotenv import load_dotenv, find_dotenv

# Load environment variables from .env file (install python-dotenv: pip install python-dotenv)
dotenv_path = find_dotenv(usecwd=True)
if dotenv_path:
    load_dotenv(dotenv_path)
else:
    # fallback: try loading default .env in cwd
    load_dotenv()


class Config:
    # --- CORE FLASK CONFIG ---
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'storytime-dev-secret-replace-me'
    PORT = int(os.environ.get('PORT', 5050))
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')

    # --- AUTH PROVIDER CONFIG ---
    # 'local' = in-memory accounts (dev only, lost on restart)
    # 'firebase' = Firebase Authentication (password sign-in + ID token verification)
    AUTH_PROVIDER = os.environ.get('AUTH_PROVIDER', 'local').lower()
    # Seconds to wait on the auth provider before treating it as unreachable
    AUTH_HTTP_TIMEOUT = float(os.environ.get('AUTH_HTTP_TIMEOUT', 10))

    # Get these from Firebase Console: https://console.firebase.google.com/
    FIREBASE_WEB_API_KEY = os.environ.get('FIREBASE_WEB_API_KEY') or None
    FIREBASE_PROJECT_ID = os.environ.get('FIREBASE_PROJECT_ID') or None
    # Service account for backend verification (JSON file path or JSON string)
    FIREBASE_SERVICE_ACCOUNT_PATH = os.environ.get('FIREBASE_SERVICE_ACCOUNT_PATH') or None
    FIREBASE_SERVICE_ACCOUNT_JSON = os.environ.get('FIREBASE_SERVICE_ACCOUNT_JSON') or None

    # --- PERSISTENCE CONFIG ---
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///storytime.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # --- LLM CONFIG ---
    # 'openai' = OpenAI GPT, 'deepseek' = DeepSeek (OpenAI-compatible),
    # 'groq' = Groq (fast & free), 'anthropic' = Claude,
    # 'mock' = deterministic local narrative (no network)
    LLM_PROVIDER = os.environ.get('LLM_PROVIDER', 'openai').lower()
    # Empty means "use the provider default" (see ai_service.DEFAULT_MODELS)
    LLM_MODEL = os.environ.get('LLM_MODEL') or None
    LLM_TIMEOUT = float(os.environ.get('LLM_TIMEOUT', 60))
    SYSTEM_PROMPT = os.environ.get('SYSTEM_PROMPT') or 'You are a creative story generator.'

    OPENAI_API_KEY = os.environ.get('OPENAI_API_KEY') or None
    OPENAI_BASE_URL = os.environ.get('OPENAI_BASE_URL') or 'https://api.openai.com/v1'
    DEEPSEEK_API_KEY = os.environ.get('DEEPSEEK_API_KEY') or None
    DEEPSEEK_BASE_URL = os.environ.get('DEEPSEEK_BASE_URL') or 'https://api.deepseek.com/v1'
    GROQ_API_KEY = os.environ.get('GROQ_API_KEY') or None  # Free tier: https://console.groq.com
    ANTHROPIC_API_KEY = os.environ.get('ANTHROPIC_API_KEY') or None


class ClientConfig:
    """Settings for the command line client (see console.py)."""
    API_URL = os.environ.get('STORYTIME_API_URL') or 'http://localhost:5050'
    CREDENTIALS_PATH = os.environ.get('STORYTIME_CREDENTIALS') or os.path.join(
        os.path.expanduser('~'), '.storytime', 'credentials.json')
    HTTP_TIMEOUT = float(os.environ.get('STORYTIME_HTTP_TIMEOUT', 90))
