# dx_core/integrations/loading.py
from __future__ import annotations

from typing import Any

from django.conf import settings
from django.utils.module_loading import import_string


def load_strategy(setting_name: str, default: str) -> Any:
    """
    Instantiate the class named by a dotted-path setting, falling back to `default`.
    """
    path = getattr(settings, setting_name, None) or default
    return import_string(path)()
