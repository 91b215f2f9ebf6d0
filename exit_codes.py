"""Коды выхода CLI (media_search_skill.py)."""

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 2  # команда выполнена, но зеркало вернуло ошибку (например, refresh не удался)
EXIT_INTERRUPTED = 130
