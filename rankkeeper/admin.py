from django.contrib import admin

from .models import StoredValue


@admin.register(StoredValue)
class StoredValueAdmin(admin.ModelAdmin):
    list_display = ("key", "size_bytes", "updated_at")
    search_fields = ("key",)
    readonly_fields = ("updated_at",)
