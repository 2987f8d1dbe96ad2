import sys
import threading

_SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"


class Spinner:
    """Thread-based spinner that renders on the current line using \\r."""

    def __init__(self, prefix: str = "", label: str = " Thinking..."):
        self._prefix = prefix
        self._label = label
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._frame_width = 1 + len(label)

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._stop.is_set()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._thread is None or self._stop.is_set():
            return
        self._stop.set()
        self._thread.join()
        clear = self._prefix + " " * self._frame_width
        sys.stdout.write("\r" + clear + "\r" + self._prefix)
        sys.stdout.flush()

    def _run(self) -> None:
        i = 0
        try:
            while not self._stop.is_set():
                frame = _SPINNER_FRAMES[i % len(_SPINNER_FRAMES)] + self._label
                sys.stdout.write("\r" + self._prefix + frame)
                sys.stdout.flush()
                self._stop.wait(0.08)
                i += 1
        except (UnicodeEncodeError, OSError):
            pass  # Terminal doesn't support these characters


class StreamPrinter:
    """Prints the growing streaming text incrementally.

    The session client hands over the whole visible text on each flush; only
    the part not yet printed is written. A frame that does not continue the
    printed text (a retried reply starts over) is written on a fresh line.
    """

    def __init__(self, prefix: str = "assistant> "):
        self._prefix = prefix
        self._printed = ""
        self._spinner: Spinner | None = None

    def begin(self) -> None:
        self._printed = ""
        self._spinner = Spinner(prefix=self._prefix)
        self._spinner.start()

    def render(self, text: str) -> None:
        if self._spinner is not None:
            self._spinner.stop()
            self._spinner = None
        if not text or text == self._printed:
            return
        if text.startswith(self._printed):
            sys.stdout.write(text[len(self._printed):])
        else:
            sys.stdout.write("\n" + self._prefix + text)
        sys.stdout.flush()
        self._printed = text

    def finish(self, final_text: str | None = None) -> None:
        if self._spinner is not None:
            self._spinner.stop()
            self._spinner = None
        if final_text is not None:
            self.render(final_text)
        self._printed = ""
