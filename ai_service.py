# ai_service.py

import hashlib
import requests
from flask import Blueprint, jsonify, current_app
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from errors import UpstreamFailure

# Create a Blueprint for AI routes
ai_bp = Blueprint('ai', __name__, url_prefix='/api/ai')

DEFAULT_MODELS = {
    'openai': 'gpt-4o-mini',
    'deepseek': 'deepseek-chat',
    'groq': 'llama-3.3-70b-versatile',
    'anthropic': 'claude-3-haiku-20240307',
    'mock': 'mock',
}

# OpenAI-compatible providers: provider -> (api key setting, base url setting)
_OPENAI_COMPATIBLE = {
    'openai': ('OPENAI_API_KEY', 'OPENAI_BASE_URL'),
    'deepseek': ('DEEPSEEK_API_KEY', 'DEEPSEEK_BASE_URL'),
    'groq': ('GROQ_API_KEY', None),
}
GROQ_BASE_URL = 'https://api.groq.com/openai/v1'
ANTHROPIC_URL = 'https://api.anthropic.com/v1/messages'


# Create a session with connection pooling for faster API calls
def _create_requests_session():
    """Create a requests session with connection pooling and no automatic retries."""
    session = requests.Session()
    retry_strategy = Retry(
        total=0,  # Generation is never retried automatically; the user retries
        backoff_factor=0,
        status_forcelist=[]
    )
    adapter = HTTPAdapter(max_retries=retry_strategy, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session

_session = None

def _get_session():
    """Get or create the global requests session."""
    global _session
    if _session is None:
        _session = _create_requests_session()
    return _session


def _synthesize_narrative(prompt_text, paragraphs=3):
    """Create a deterministic, multi-paragraph narrative from the prompt_text.
    Used by the 'mock' provider so local runs and tests need no network and
    the same prompt always yields the same text.
    """
    if not prompt_text or not prompt_text.strip():
        prompt_text = 'A quiet village at dusk.'
    h = hashlib.sha1(prompt_text.encode('utf-8')).hexdigest()
    moods = ['gently', 'ominously', 'brightly', 'softly', 'curiously']
    settings = ['a coastal town', 'an overgrown forest', 'a bustling market', 'an abandoned manor', 'a hidden valley']
    characters = ['an old storyteller', 'a curious child', 'a weary traveler', 'a lonely artist', 'a clever fox']
    events = ['finds an unexpected map', 'uncovers a faded photograph', 'hears a distant melody', 'chases a flicker of light', 'stumbles on a secret door']

    def pick(pool, idx):
        return pool[int(h[idx:idx + 6], 16) % len(pool)]

    character = pick(characters, 12)
    paras = [f"{prompt_text.strip()} {character.capitalize()} {pick(moods, 0)} takes in {pick(settings, 6)} and {pick(events, 18)}."]
    for i in range(1, paragraphs):
        paras.append(f"{character.capitalize()} {pick(events, (18 + i * 6) % 34)} near {pick(settings, (24 + i * 6) % 34)}.")
    return "\n\n".join(paras)


def _last_user_message(messages):
    for message in reversed(messages):
        if message.get('role') == 'user':
            return message.get('content') or ''
    return ''


def _post_json(url, headers, payload, provider):
    cfg = current_app.config
    timeout_secs = cfg.get('LLM_TIMEOUT', 60)
    current_app.logger.info('[LLM] POST %s provider=%s timeout=%ss', url, provider, timeout_secs)
    try:
        response = _get_session().post(url, headers=headers, json=payload, timeout=timeout_secs)
    except requests.exceptions.Timeout as e:
        current_app.logger.error('[LLM] %s timed out after %ss', provider, timeout_secs)
        raise UpstreamFailure(f'{provider} request timed out') from e
    except requests.exceptions.RequestException as e:
        current_app.logger.error('[LLM] %s request failed: %s', provider, e)
        raise UpstreamFailure(f'{provider} request failed') from e

    if response.status_code != 200:
        current_app.logger.error('[LLM] %s returned %s: %s', provider, response.status_code, response.text[:300])
        raise UpstreamFailure(f'{provider} API error ({response.status_code})')
    try:
        return response.json()
    except ValueError as e:
        raise UpstreamFailure(f'{provider} returned invalid JSON') from e


def _call_openai_compatible(provider, messages, model):
    cfg = current_app.config
    key_setting, base_setting = _OPENAI_COMPATIBLE[provider]
    api_key = cfg.get(key_setting)
    if not api_key:
        raise UpstreamFailure(f'{key_setting} is required when LLM_PROVIDER={provider}')
    base_url = cfg.get(base_setting) if base_setting else GROQ_BASE_URL

    data = _post_json(
        f"{base_url.rstrip('/')}/chat/completions",
        {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        {"model": model, "messages": messages},
        provider,
    )
    try:
        return data['choices'][0]['message']['content'] or ''
    except (KeyError, IndexError, TypeError) as e:
        raise UpstreamFailure(f'{provider} returned an unexpected response') from e


def _call_anthropic(messages, model):
    """Call Anthropic Claude API. System messages go in the top-level field."""
    api_key = current_app.config.get('ANTHROPIC_API_KEY')
    if not api_key:
        raise UpstreamFailure('ANTHROPIC_API_KEY is required when LLM_PROVIDER=anthropic')

    system = "\n".join(m['content'] for m in messages if m.get('role') == 'system')
    payload = {
        "model": model,
        "max_tokens": 1024,
        "messages": [m for m in messages if m.get('role') != 'system'],
    }
    if system:
        payload["system"] = system

    data = _post_json(
        ANTHROPIC_URL,
        {
            "x-api-key": api_key,
            "anthropic-version": "2023-06-01",
            "Content-Type": "application/json"
        },
        payload,
        'anthropic',
    )
    try:
        return "".join(block.get('text', '') for block in data['content'] if block.get('type') == 'text')
    except (KeyError, TypeError) as e:
        raise UpstreamFailure('anthropic returned an unexpected response') from e


def generate_chat_completion(messages, model=None):
    """Send role-tagged ``messages`` to the configured LLM and return its text.

    Exactly one upstream request is made. Raises ``UpstreamFailure`` when the
    provider fails or returns no text.
    """
    provider = current_app.config.get('LLM_PROVIDER', 'openai')
    if provider not in DEFAULT_MODELS:
        raise UpstreamFailure(f'Unknown LLM_PROVIDER: {provider}')
    used_model = model or current_app.config.get('LLM_MODEL') or DEFAULT_MODELS[provider]

    if provider == 'mock':
        text = _synthesize_narrative(_last_user_message(messages))
    elif provider == 'anthropic':
        text = _call_anthropic(messages, used_model)
    else:
        text = _call_openai_compatible(provider, messages, used_model)

    if not text or not text.strip():
        raise UpstreamFailure(f'{provider} returned an empty completion')
    return text


def story_messages(prompt):
    return [
        {"role": "system", "content": current_app.config.get('SYSTEM_PROMPT') or 'You are a creative story generator.'},
        {"role": "user", "content": prompt},
    ]


@ai_bp.route('/status', methods=['GET'])
def status():
    """Return active provider configuration (safe, non-secret) for debugging."""
    cfg = current_app.config
    provider = cfg.get('LLM_PROVIDER')
    return jsonify({
        'llm_provider': provider,
        'llm_model': cfg.get('LLM_MODEL') or DEFAULT_MODELS.get(provider),
        'auth_provider': cfg.get('AUTH_PROVIDER'),
    }), 200
