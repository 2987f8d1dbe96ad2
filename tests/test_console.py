import io
import unittest
from contextlib import redirect_stdout

from vrin_chat.console import StreamPrinter


class StreamPrinterTests(unittest.TestCase):
    def _render(self, frames: list[str], final_text: str | None = None) -> str:
        printer = StreamPrinter(prefix="assistant> ")
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            for frame in frames:
                printer.render(frame)
            printer.finish(final_text)
        return buffer.getvalue()

    def test_growing_frames_print_only_the_new_tail(self) -> None:
        self.assertEqual("Hi there", self._render(["Hi", "Hi", "Hi there"], "Hi there"))

    def test_final_text_completes_unflushed_tail(self) -> None:
        self.assertEqual("Hi there!", self._render(["Hi"], "Hi there!"))

    def test_restarted_reply_is_printed_on_a_fresh_line(self) -> None:
        output = self._render(["Stale partial text", "Fr", "Fresh"], "Fresh answer")
        self.assertEqual("Stale partial text\nassistant> Fresh answer", output)

    def test_restart_seen_only_at_finish_is_still_printed(self) -> None:
        output = self._render(["Stale partial text"], "Fresh")
        self.assertEqual("Stale partial text\nassistant> Fresh", output)

    def test_empty_frame_prints_nothing(self) -> None:
        self.assertEqual("", self._render(["", ""]))


if __name__ == "__main__":
    unittest.main()
