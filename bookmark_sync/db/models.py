"""Peewee ORM models for the sync state database."""

from __future__ import annotations

import datetime as _dt
from typing import Any

import peewee
from playhouse.sqlite_ext import JSONField

from bookmark_sync.core.time_utils import utc_now

# A proxy that will be initialised with the concrete database instance at runtime.
database_proxy: peewee.Database = peewee.DatabaseProxy()


class BaseModel(peewee.Model):
    """Base Peewee model bound to the lazily initialised database proxy."""

    def save(self, *args: Any, **kwargs: Any) -> int:
        if hasattr(self, "updated_at"):
            self.updated_at = utc_now()
        return super().save(*args, **kwargs)

    class Meta:
        database = database_proxy
        legacy_table_names = False


class KeyValueRecord(BaseModel):
    """One named JSON record (mappings, links, queue, settings, stats...)."""

    key = peewee.TextField(primary_key=True)
    value = JSONField(null=True)
    updated_at = peewee.DateTimeField(default=lambda: _dt.datetime.now(_dt.UTC))


ALL_MODELS: tuple[type[BaseModel], ...] = (KeyValueRecord,)
