from django.db import models


class StoredValue(models.Model):
    """
    One key in the local key-value store.

    The whole tracked-app collection lives in a single row as serialized
    JSON; the preferred country and sync bookkeeping live in their own rows.
    """

    key = models.CharField(max_length=100, unique=True)
    value = models.TextField(blank=True, default="")
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["key"]

    def __str__(self):
        return self.key

    @property
    def size_bytes(self) -> int:
        return len(self.value.encode("utf-8"))
