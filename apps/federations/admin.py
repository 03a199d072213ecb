"""
Django admin configuration for federations.
"""
from django.contrib import admin
from .models import Federation, Member


class MemberInline(admin.TabularInline):
    model = Member
    extra = 0
    fields = ['duid', 'display_name', 'role', 'is_active']


@admin.register(Federation)
class FederationAdmin(admin.ModelAdmin):
    list_display = ['name', 'slug', 'status', 'created_at']
    list_filter = ['status']
    search_fields = ['name', 'slug']
    inlines = [MemberInline]


@admin.register(Member)
class MemberAdmin(admin.ModelAdmin):
    list_display = ['duid', 'display_name', 'federation', 'role', 'is_active', 'created_at']
    list_filter = ['role', 'is_active']
    search_fields = ['duid', 'display_name', 'federation__slug']
    raw_id_fields = ['federation']
