"""Read-aloud playback over a pluggable speech capability.

The controller allows one utterance at a time::

    IDLE -> SPEAKING -> IDLE

Starting playback while speaking cancels the current utterance first. Speech
engines report completion through callbacks, which may arrive after the
utterance was cancelled; callbacks for anything but the active utterance are
ignored.
"""

import enum
import itertools
import logging
import re
import threading
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

PREFERRED_REGIONS = [
    re.compile(r'en(-|_)?US', re.I),
    re.compile(r'en(-|_)?GB', re.I),
    re.compile(r'en(-|_)?AU', re.I),
    re.compile(r'en(-|_)?CA', re.I),
    re.compile(r'en(-|_)?IN', re.I),
]
ENGLISH = re.compile(r'^en([-_]|$)', re.I)


class PlaybackUnsupported(RuntimeError):
    pass


@dataclass(frozen=True)
class Voice:
    name: str
    lang: str = ''
    voice_uri: str = ''

    @property
    def key(self):
        return self.voice_uri or self.name


@dataclass
class Utterance:
    text: str
    voice: Optional[Voice] = None
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0
    id: int = 0


class SpeechCapability:
    """What the controller needs from a speech engine."""

    def supported(self):
        raise NotImplementedError

    def voices(self):
        raise NotImplementedError

    def speak(self, utterance, on_end, on_error):
        """Start ``utterance``; call ``on_end()`` or ``on_error(exc)`` when it finishes."""
        raise NotImplementedError

    def cancel(self):
        raise NotImplementedError

    def on_voices_changed(self, callback):
        raise NotImplementedError


class NullSpeechCapability(SpeechCapability):
    """Stand-in for targets without speech synthesis."""

    def supported(self):
        return False

    def voices(self):
        return []

    def speak(self, utterance, on_end, on_error):
        raise PlaybackUnsupported('Text-to-speech is not supported on this platform.')

    def cancel(self):
        pass

    def on_voices_changed(self, callback):
        pass


def choose_voice(voices, voice_uri=None, voice_name=None):
    """Explicit request, then preferred English region, then any English voice, then the first voice."""
    voices = list(voices or [])
    if voice_uri:
        for v in voices:
            if v.voice_uri == voice_uri:
                return v
    if voice_name:
        for v in voices:
            if v.name == voice_name:
                return v
    for region in PREFERRED_REGIONS:
        for v in voices:
            if region.search(v.lang or ''):
                return v
    for v in voices:
        if ENGLISH.search(v.lang or ''):
            return v
    return voices[0] if voices else None


def curate_voices(voices, limit=5, minimum=3):
    """A short list for a voice picker: one voice per preferred region, topped up with others."""
    voices = list(voices or [])
    picked = []
    seen = set()
    for region in PREFERRED_REGIONS:
        for v in voices:
            if region.search(v.lang or '') and v.key not in seen:
                picked.append(v)
                seen.add(v.key)
                break
    if len(picked) < minimum:
        for v in voices:
            if len(picked) >= limit:
                break
            if v.key not in seen:
                picked.append(v)
                seen.add(v.key)
    return picked[:limit]


def load_voices(capability, timeout=2.0):
    """Return the engine's voices, waiting up to ``timeout`` for them to load."""
    if not capability.supported():
        return []
    existing = capability.voices()
    if existing:
        return existing
    loaded = threading.Event()
    capability.on_voices_changed(loaded.set)
    loaded.wait(timeout)
    return capability.voices()


class PlaybackState(enum.Enum):
    IDLE = 'idle'
    SPEAKING = 'speaking'


class PlaybackController:

    def __init__(self, capability=None):
        self.capability = capability or NullSpeechCapability()
        self.state = PlaybackState.IDLE
        self._active_id = None
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    @property
    def supported(self):
        return self.capability.supported()

    @property
    def speaking(self):
        return self.state is PlaybackState.SPEAKING

    def _finish(self, utterance_id, error=None):
        with self._lock:
            if utterance_id != self._active_id:
                return
            self._active_id = None
            self.state = PlaybackState.IDLE
        if error is not None:
            logger.error('TTS error: %s', error)

    def play(self, text, voice_uri=None, voice_name=None, rate=1.0, pitch=1.0, volume=1.0):
        """Speak ``text``, replacing whatever is being spoken. Returns the utterance or None."""
        if not self.capability.supported():
            raise PlaybackUnsupported('Text-to-speech is not supported on this platform.')
        if not text or not text.strip():
            return None
        with self._lock:
            self.stop()
            voice = choose_voice(self.capability.voices(), voice_uri, voice_name)
            utterance = Utterance(text=text, voice=voice, rate=rate, pitch=pitch, volume=volume, id=next(self._ids))
            self._active_id = utterance.id
            self.state = PlaybackState.SPEAKING
            try:
                self.capability.speak(
                    utterance,
                    on_end=lambda: self._finish(utterance.id),
                    on_error=lambda e: self._finish(utterance.id, e),
                )
            except Exception:
                self._active_id = None
                self.state = PlaybackState.IDLE
                raise
            return utterance

    def stop(self):
        """Cancel any active utterance. Safe from any state, any number of times."""
        with self._lock:
            was_speaking = self._active_id is not None
            self._active_id = None
            self.state = PlaybackState.IDLE
            if was_speaking:
                try:
                    self.capability.cancel()
                except Exception as e:
                    logger.warning('Cancelling speech failed: %s', e)

    def toggle(self, text, **options):
        """Read-aloud button: stop if speaking, otherwise start."""
        if self.speaking:
            self.stop()
            return None
        return self.play(text, **options)
