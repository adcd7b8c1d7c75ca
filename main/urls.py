from django.urls import path
from main.views import auth_views, user_views, audit_views


app_name = 'main'


urlpatterns = [
    path('auth/login', auth_views.login, name='login'),
    path('auth/logout', auth_views.logout, name='logout'),
    path('auth/me', auth_views.me, name='me'),
    path('auth/change-password', auth_views.change_password, name='change-password'),

    path('users/', user_views.users, name='user-list'),
    path('users/<uuid:user_id>/', user_views.user_detail, name='user-detail'),

    path('activity/', audit_views.activity, name='activity'),
]
