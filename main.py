#!/usr/bin/env python3
"""
DHT Node
========

Запуск узла без установки пакета:
    python main.py :8000
    python main.py :8001 --bootstrap 127.0.0.1:8000

После `pip install .` то же самое доступно как `dhtnode`.
"""

from dhtnode.runner import main


if __name__ == "__main__":
    main()
