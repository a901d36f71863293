"""
Node Identity - Идентификаторы узлов и ключей
=============================================

[IDENTITY] Все идентификаторы - hex-строки в нижнем регистре:
- NodeID = первые 8 байт SHA-1 от сетевого адреса узла (16 hex символов)
- Ключ по имени = SHA-1 от UTF-8 имени (40 hex символов)
- Ключ по содержимому = SHA-1 от сырых байт (40 hex символов)

NodeID и ключи используют одну метрику расстояния (см. routing.py),
поэтому "ближайший пир к ключу" имеет смысл.
"""

import hashlib

# Длина NodeID в байтах
NODE_ID_BYTES = 8


def derive_node_id(address: str) -> str:
    """
    Детерминированно вычислить NodeID по сетевому адресу.

    Любая строка допустима; коллизии не обрабатываются.

    Args:
        address: Адрес в том виде, в каком он сконфигурирован (":8080", "10.0.0.2:9000")

    Returns:
        16 hex символов
    """
    return hashlib.sha1(address.encode("utf-8")).digest()[:NODE_ID_BYTES].hex()


def key_from_name(name: str) -> str:
    """Ключ для человекочитаемого имени."""
    return hashlib.sha1(name.encode("utf-8")).hexdigest()


def key_from_content(data: bytes) -> str:
    """Ключ для содержимого (content addressing)."""
    return hashlib.sha1(data).hexdigest()


def advertised_address(listen_address: str) -> str:
    """
    Адрес, который узел сообщает пирам.

    ":8080" слушает на всех интерфейсах, но пирам сообщаем "127.0.0.1:8080".
    """
    if listen_address.startswith(":"):
        return "127.0.0.1" + listen_address
    return listen_address
