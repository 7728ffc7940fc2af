import asyncio
import sys
import threading
import time
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")

SPINNER_FRAMES = "|/-\\"


async def run(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    text: str = "Ожидание",
    interval: float = 0.1,
    **kwargs: Any,
) -> T:
    """
    Выполняет долгую операцию (клон, ожидание quality gate) и крутит спиннер
    в отдельном потоке, пока операция не завершится.
    Итог пишется одной строкой: "<text> - OK" или "<text> - FAILED".
    """
    stop_event = threading.Event()

    def spinner() -> None:
        i = 0
        while not stop_event.is_set():
            sys.stdout.write(f"\r{text} {SPINNER_FRAMES[i % len(SPINNER_FRAMES)]}")
            sys.stdout.flush()
            i += 1
            time.sleep(interval)

    thread = threading.Thread(target=spinner, daemon=True)
    thread.start()

    success = False
    try:
        result = await func(*args, **kwargs)
        success = True
        return result
    finally:
        stop_event.set()
        await asyncio.to_thread(thread.join)

        sys.stdout.write("\r" + " " * (len(text) + 2) + "\r")
        sys.stdout.write(f"{text} - {'OK' if success else 'FAILED'}\n")
        sys.stdout.flush()
