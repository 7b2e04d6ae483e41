# dpgs/core/exceptions.py
from typing import Optional


class DependencyParseError(Exception):
    """Базовое исключение пакета."""


class MalformedInputError(DependencyParseError):
    """
    Некорректный пример: несогласованные длины, параметры факторов вне диапазона,
    несовпадение размеров входа и выхода. Сообщение всегда содержит id примера.
    """

    def __init__(self, message: str, example_id: Optional[str] = None):
        self.example_id = example_id
        if example_id is not None:
            message = f"[example {example_id}] {message}"
        super().__init__(message)
