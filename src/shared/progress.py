import sys
import threading
import time
from typing import TextIO


class SingleLineRenderer:
    """Потокобезопасный рендерер для вывода в одну строку."""

    def __init__(self, stream: TextIO | None = None, *, single_line: bool = True) -> None:
        self.stream = stream
        self.single_line = single_line
        self._last_len = 0
        self._lock = threading.Lock()

    @property
    def _out(self) -> TextIO:
        return self.stream or sys.stdout

    def clear_line(self) -> None:
        """Полностью очистить текущую строку прогресса."""
        with self._lock:
            if self.single_line and self._last_len > 0:
                self._out.write('\r' + ' ' * self._last_len + '\r')
                self._out.flush()
                self._last_len = 0

    def write_line(self, msg: str) -> None:
        """Перерисовать текущую строку прогресса."""
        with self._lock:
            if self.single_line:
                pad = max(0, self._last_len - len(msg))
                self._out.write('\r' + msg + (' ' * pad))
            else:
                self._out.write(msg + '\n')
            self._out.flush()
            self._last_len = len(msg)

    def finish_line(self) -> None:
        """Перевести строку, оставив последнее состояние на экране."""
        with self._lock:
            if self.single_line and self._last_len > 0:
                self._out.write('\n')
                self._out.flush()
            self._last_len = 0


class ConsoleProgress:
    """Прогресс-бар загрузки для CLI.

    Счётчики приходят снаружи (опрос статуса задания), поэтому бар
    перерисовывается по абсолютному значению, а не по шагам.
    """

    BAR_LEN = 30

    def __init__(
        self,
        total: int,
        label: str = 'Progress',
        writer: SingleLineRenderer | None = None,
    ) -> None:
        self.total = max(0, int(total))
        self.done = 0
        self.start = time.monotonic()
        self.label = label
        self._writer = writer or SingleLineRenderer()
        self._writer.clear_line()
        self._render()  # показать 0%

    def _format_eta(self, remaining: float) -> str:
        if remaining == float('inf'):
            return '--:--'
        m, s = divmod(int(remaining), 60)
        h, m = divmod(m, 60)
        if h > 0:
            return f'{h:02d}:{m:02d}:{s:02d}'
        return f'{m:02d}:{s:02d}'

    def render_text(self) -> str:
        elapsed = max(1e-6, time.monotonic() - self.start)
        rps = self.done / elapsed
        left = self.total - self.done
        remaining = left / rps if rps > 0 else float('inf')
        if left <= 0:
            remaining = 0.0
        ratio = self.done / self.total if self.total else 1.0
        filled = int(self.BAR_LEN * ratio)
        bar = '█' * filled + '░' * (self.BAR_LEN - filled)
        return (
            f'{self.label}: [{bar}] {self.done}/{self.total} | {rps:4.1f}/s | ETA'
            f' {self._format_eta(remaining)}'
        )

    def _render(self) -> None:
        self._writer.write_line(self.render_text())

    def update(self, done: int, total: int | None = None) -> None:
        if total is not None:
            self.total = max(0, int(total))
        self.done = max(0, min(self.total, int(done)))
        self._render()

    def step(self, n: int = 1) -> None:
        self.update(self.done + n)

    def close(self) -> None:
        self._writer.finish_line()
