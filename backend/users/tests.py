from django.test import TestCase
from django.contrib.auth import get_user_model
from django.urls import reverse
from rest_framework.test import APITestCase
from rest_framework import status

from .models import Group

User = get_user_model()


class UserModelTests(TestCase):
    def test_defaults_to_single_notifications(self):
        user = User.objects.create_user(
            username='newcomer',
            email='newcomer@example.com',
            password='testpass123'
        )
        self.assertEqual(user.receive_notifications, 'single')
        self.assertEqual(user.display_name, 'newcomer')

    def test_display_names(self):
        user = User.objects.create_user(
            username='jdoe',
            email='jdoe@example.com',
            password='testpass123',
            first_name='Jane',
            last_name='Doe'
        )
        group = Group.objects.create(name='ops')

        self.assertEqual(user.display_name, 'Jane Doe')
        self.assertEqual(group.display_name, 'ops')
        group.full_name = 'Operations'
        self.assertEqual(str(group), 'Operations')


class NotificationPreferenceAPITests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(
            username='reader',
            email='reader@example.com',
            password='testpass123'
        )
        self.url = reverse('notification-preference')

    def test_get_preference(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['receive_notifications'], 'single')
        self.assertEqual(response.data['username'], 'reader')

    def test_switch_to_digest(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.patch(self.url, {'receive_notifications': 'digest'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertEqual(self.user.receive_notifications, 'digest')

    def test_read_only_fields_are_ignored(self):
        self.client.force_authenticate(user=self.user)
        self.client.patch(self.url, {'email': 'other@example.com'}, format='json')

        self.user.refresh_from_db()
        self.assertEqual(self.user.email, 'reader@example.com')

    def test_unknown_preference(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.patch(self.url, {'receive_notifications': 'weekly'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.user.refresh_from_db()
        self.assertEqual(self.user.receive_notifications, 'single')

    def test_requires_authentication(self):
        response = self.client.get(self.url)
        self.assertIn(
            response.status_code,
            [status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN]
        )
