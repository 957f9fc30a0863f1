from django.contrib import admin
from .models import Page, UserParticipation, GroupParticipation, Comment


class UserParticipationInline(admin.TabularInline):
    model = UserParticipation
    extra = 0
    fields = ['user', 'watch', 'star', 'access']
    raw_id_fields = ['user']


class GroupParticipationInline(admin.TabularInline):
    model = GroupParticipation
    extra = 0
    fields = ['group', 'access']


@admin.register(Page)
class PageAdmin(admin.ModelAdmin):
    list_display = ['id', 'title', 'is_public', 'is_deleted', 'created_by', 'updated_at']
    list_filter = ['is_public', 'is_deleted', 'created_at']
    search_fields = ['title', 'created_by__username']
    readonly_fields = ['created_at', 'updated_at']
    inlines = [UserParticipationInline, GroupParticipationInline]


@admin.register(UserParticipation)
class UserParticipationAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'page', 'watch', 'star', 'access']
    list_filter = ['watch', 'star', 'access']
    search_fields = ['user__username', 'page__title']


@admin.register(Comment)
class CommentAdmin(admin.ModelAdmin):
    list_display = ['id', 'page', 'user', 'created_at']
    search_fields = ['body', 'user__username', 'page__title']
