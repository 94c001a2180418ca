# =========================
# FILE: phoneagent/recognizer.py
# =========================
"""
Speech recognition (local, offline): Vosk + sounddevice.

One microphone, one recognizer. Two listening modes:
  continuous  every final utterance is delivered until stop()  (wake words)
  single      first non-empty utterance is delivered, then it stops (commands)

Callbacks run on the recognizer's worker thread.
"""

import json
import queue
import threading
from typing import Callable, Optional, Protocol

try:
    import sounddevice as sd
    from vosk import KaldiRecognizer, Model, SetLogLevel

    VOSK_AVAILABLE = True
except ImportError:
    VOSK_AVAILABLE = False

ResultCallback = Callable[[str], None]
ErrorCallback = Callable[[str], None]

ERROR_RETRY_DELAY = 2.0


class RecognizerError(RuntimeError):
    pass


class SpeechRecognizer(Protocol):
    def start_continuous(self, on_result: ResultCallback, on_error: ErrorCallback) -> None: ...

    def start_listening(self, on_result: ResultCallback, on_error: ErrorCallback) -> None: ...

    def stop(self) -> None: ...

    def release(self) -> None: ...


class VoskRecognizer:
    def __init__(self, model_path: str, sample_rate: int = 16000,
                 device: Optional[int] = None) -> None:
        if not VOSK_AVAILABLE:
            raise RecognizerError(
                "Vosk and/or sounddevice not installed.\n"
                "Install with: pip install 'phoneagent[voice]'"
            )
        self.model_path = model_path
        self.sample_rate = sample_rate
        self.device = device
        self._model = None
        self._stream = None
        self._generation = 0
        self._lock = threading.Lock()
        self._load_model()

    def _load_model(self) -> None:
        print(f"🎤 Loading Vosk model from: {self.model_path}")
        SetLogLevel(-1)
        try:
            self._model = Model(self.model_path)
        except Exception as e:
            # vosk raises a bare Exception when the model dir is wrong
            raise RecognizerError(f"Could not load Vosk model at '{self.model_path}': {e}") from e
        print("✅ Vosk model loaded")

    # -------------------------
    # Listening
    # -------------------------
    def start_continuous(self, on_result: ResultCallback, on_error: ErrorCallback) -> None:
        self._start(on_result, on_error, continuous=True)

    def start_listening(self, on_result: ResultCallback, on_error: ErrorCallback) -> None:
        self._start(on_result, on_error, continuous=False)

    def _start(self, on_result: ResultCallback, on_error: ErrorCallback, continuous: bool) -> None:
        failure = self._open(on_result, on_error, continuous)
        if failure is not None:
            generation, message = failure
            self._fail(generation, message, on_result, on_error, continuous)

    def _open(self, on_result: ResultCallback, on_error: ErrorCallback, continuous: bool):
        """Open the mic stream and spawn the worker. Returns (generation, error) on failure."""
        with self._lock:
            if self._model is None:
                return self._generation, "recognizer released"
            self._close_stream()
            self._generation += 1
            generation = self._generation
            audio: "queue.Queue[bytes]" = queue.Queue()

            def audio_callback(indata, frames, time_info, status):
                audio.put(bytes(indata))

            try:
                self._stream = sd.RawInputStream(
                    samplerate=self.sample_rate,
                    blocksize=8000,
                    dtype="int16",
                    channels=1,
                    device=self.device,
                    callback=audio_callback,
                )
                self._stream.start()
            except sd.PortAudioError as e:
                self._stream = None
                return generation, f"Could not start audio input: {e}"

        threading.Thread(
            target=self._voice_loop,
            args=(generation, audio, on_result, continuous),
            name="vosk-listener",
            daemon=True,
        ).start()
        return None

    def _voice_loop(self, generation: int, audio: "queue.Queue[bytes]",
                    on_result: ResultCallback, continuous: bool) -> None:
        recognizer = KaldiRecognizer(self._model, self.sample_rate)
        while generation == self._generation:
            try:
                data = audio.get(timeout=0.5)
            except queue.Empty:
                continue
            if generation != self._generation:
                break
            if not recognizer.AcceptWaveform(data):
                continue
            try:
                text = json.loads(recognizer.Result()).get("text", "").strip()
            except ValueError:
                text = ""
            if not text:
                continue
            on_result(text)
            if not continuous:
                self._stop_generation(generation)
                break

    def _fail(self, generation: int, message: str, on_result: ResultCallback,
              on_error: ErrorCallback, continuous: bool) -> None:
        on_error(message)
        if continuous:
            def retry() -> None:
                if generation == self._generation and self._model is not None:
                    self._start(on_result, on_error, continuous=True)
            timer = threading.Timer(ERROR_RETRY_DELAY, retry)
            timer.daemon = True
            timer.start()

    # -------------------------
    # Teardown
    # -------------------------
    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except sd.PortAudioError as e:
                print(f"⚠️ Audio stream close failed: {e}")

    def _stop_generation(self, generation: int) -> None:
        with self._lock:
            if generation == self._generation:
                self._generation += 1
                self._close_stream()

    def stop(self) -> None:
        """Stop listening. Does not wait for the worker thread."""
        with self._lock:
            self._generation += 1
            self._close_stream()

    def release(self) -> None:
        self.stop()
        self._model = None
