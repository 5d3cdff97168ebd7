# -*- coding: utf-8 -*-
# crystal_bot/integrations/__init__.py
# Внешние системы: платёжные провайдеры, чат-платформа, PDF-инвойсы.

from .providers import PaymentLink, PaymentProvider

__all__ = ["PaymentLink", "PaymentProvider"]
