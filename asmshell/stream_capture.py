"""
Capture output that native libraries write straight to a file descriptor, bypassing Python's
stream objects. Keystone reports some assembler warnings this way.

**Usage:**
```python
with StreamCapture(sys.stderr) as stream_capture:
    ks.asm("mov r0, r0")
if "warning:" in stream_capture.get_captured_stream():
    ...
```
"""
import os
from types import TracebackType
from typing import IO, Optional, Type

_CHUNK_SIZE = 4096


class StreamCapture:
    """
    Redirect the file descriptor behind a stream into a pipe while the context is active.
    """

    end_marker = b"\b"

    def __init__(self, stream: IO):
        self.stream = stream
        self.stream_file_descriptor = self.stream.fileno()
        self.pipe_out, self.pipe_in = os.pipe()
        self._captured = b""
        self._saved_file_descriptor: Optional[int] = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(
        self,
        exception_type: Optional[Type[BaseException]],
        exception_value: Optional[BaseException],
        exception_traceback: Optional[TracebackType],
    ) -> None:
        self.stop()

    def start(self) -> None:
        self.stream.flush()
        self._saved_file_descriptor = os.dup(self.stream_file_descriptor)
        os.dup2(self.pipe_in, self.stream_file_descriptor)

    def stop(self) -> None:
        """
        Restore the stream and replay what was captured onto it.
        """
        if self._saved_file_descriptor is None:
            # Capture was not started
            return

        self.stream.write(self.end_marker.decode())
        self.stream.flush()
        self._drain_pipe()

        os.close(self.pipe_in)
        os.close(self.pipe_out)
        os.dup2(self._saved_file_descriptor, self.stream_file_descriptor)
        os.close(self._saved_file_descriptor)
        self._saved_file_descriptor = None

        # Whatever the library printed still reaches its original destination
        self.stream.write(self.get_captured_stream())
        self.stream.flush()

    def get_captured_stream(self) -> str:
        return self._captured.decode(errors="replace")

    def _drain_pipe(self) -> None:
        while True:
            chunk = os.read(self.pipe_out, _CHUNK_SIZE)
            if not chunk:
                break
            marker_index = chunk.find(self.end_marker)
            if marker_index != -1:
                self._captured += chunk[:marker_index]
                break
            self._captured += chunk
