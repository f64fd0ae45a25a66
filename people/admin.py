from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ["username", "email", "name", "is_staff", "is_active", "date_joined"]
    list_filter = ["is_staff", "is_active"]
    search_fields = ["username", "email", "name"]
    fieldsets = BaseUserAdmin.fieldsets + (
        ("Display", {"fields": ("name",)}),
    ) # type: ignore
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ("Display", {"fields": ("email", "name")}),
    )
