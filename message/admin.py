from django.contrib import admin

from .models import Message


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ["id", "listing", "sender", "receiver", "is_read", "created_at"]
    list_filter = ["is_read", "created_at"]
    search_fields = ["content", "listing__title", "sender__username", "receiver__username"]
    date_hierarchy = "created_at"
    raw_id_fields = ["listing", "sender", "receiver"]
