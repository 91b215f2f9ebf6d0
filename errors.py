"""Таксономия кодов ошибок для логов и ответов API.

Используются в сервере, CLI и ядре кэша: при обработке ошибок писать error_code в лог (поле error_code).
"""

CONFIG_ERROR = "CONFIG_ERROR"
AUTH_ERROR = "AUTH_ERROR"
RATE_LIMIT = "RATE_LIMIT"
NETWORK_ERROR = "NETWORK_ERROR"
EXTERNAL_API_ERROR = "EXTERNAL_API_ERROR"

# Канал-зеркало (Telegram) недоступен: fetch или forward не выполнен
MIRROR_UNAVAILABLE = "MIRROR_UNAVAILABLE"
MIRROR_NOT_CONFIGURED = "MIRROR_NOT_CONFIGURED"  # нет TELEGRAM_API_ID/TELEGRAM_API_HASH или канала

# Ошибки запроса клиента (не ретраятся)
VALIDATION_ERROR = "VALIDATION_ERROR"

# Вложение сообщения в неожиданной форме; сообщение исключается из снапшота
CLASSIFICATION_ANOMALY = "CLASSIFICATION_ANOMALY"
