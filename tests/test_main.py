#!/usr/bin/env python3
"""
Unit tests for the preview, sync and authenticate operations and the CLI.
"""

import io
import os
import sys
import json
import tempfile
import unittest
from unittest.mock import patch

import yaml

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fake_ldap import FakeDirectory, make_config, patch_directory
from ldap_directory import main as main_module
from ldap_directory.ldap_client import LDAPConnectionError
from ldap_directory.main import DirectoryService, PREVIEW_LIMIT, authenticate_user, preview, sync

USER_FILTER = '(objectClass=inetOrgPerson)'
GROUP_FILTER = '(objectClass=groupOfUniqueNames)'


def populated_directory(count):
    directory = FakeDirectory()
    dns = []
    for i in range(count):
        dns.append(directory.add_entry(f'uid=user{i},ou=people,dc=example,dc=com', password=f'pw{i}',
                                       uid=[f'user{i}'], givenName=['User'], sn=[str(i)],
                                       mail=[f'user{i}@example.com']))
    directory.add_filter(USER_FILTER, dns)
    directory.add_filter(GROUP_FILTER, [])
    return directory


class TestPreview(unittest.TestCase):

    def test_preview_caps_users(self):
        patch_directory(self, populated_directory(PREVIEW_LIMIT + 20))

        result = preview(make_config())

        self.assertFalse(result.is_error)
        self.assertEqual(len(result.users), PREVIEW_LIMIT)
        self.assertEqual(result.message, f"Sync'ed with LDAP, found {PREVIEW_LIMIT + 20} users")

    def test_preview_small_directory(self):
        patch_directory(self, populated_directory(3))
        result = preview(make_config())
        self.assertEqual([u.email for u in result.users],
                         ['user0@example.com', 'user1@example.com', 'user2@example.com'])

    def test_preview_reports_errors(self):
        directory = populated_directory(3)
        directory.failing_filters.add(GROUP_FILTER)
        patch_directory(self, directory)

        result = preview(make_config())

        self.assertTrue(result.is_error)
        self.assertEqual(result.users, [])
        self.assertTrue(result.message.startswith('Error: unable fetch users from LDAP'))

    def test_preview_to_dict(self):
        patch_directory(self, populated_directory(1))
        payload = preview(make_config()).to_dict()
        self.assertEqual(payload['isError'], False)
        self.assertEqual(payload['users'][0]['email'], 'user0@example.com')
        self.assertTrue(payload['users'][0]['active'])


class TestSync(unittest.TestCase):

    def test_sync_plan(self):
        patch_directory(self, populated_directory(3))
        local = [{'email': 'user0@example.com'}, {'email': 'left@example.com', 'active': True}]

        result = sync(make_config(), local)

        self.assertFalse(result.is_error)
        self.assertEqual([u.email for u in result.plan.to_add], ['user1@example.com', 'user2@example.com'])
        self.assertEqual(result.plan.to_deactivate, ['left@example.com'])
        self.assertEqual(result.message, 'LDAP sync found 3 users, 2 new users added, 1 users deactivated')
        self.assertEqual(result.to_dict()['deactivate'], ['left@example.com'])

    def test_sync_bind_failure(self):
        patch_directory(self, populated_directory(3))
        result = sync(make_config(bind_password='wrong'), [])
        self.assertTrue(result.is_error)
        self.assertIsNone(result.plan)
        self.assertNotIn('add', result.to_dict())


class TestAuthenticateUser(unittest.TestCase):

    def setUp(self):
        patch_directory(self, populated_directory(2))

    def test_audit_log(self):
        with self.assertLogs('security', level='INFO') as logs:
            self.assertTrue(authenticate_user(make_config(), 'user1', 'pw1'))
            self.assertFalse(authenticate_user(make_config(), 'user1', 'nope'))

        self.assertIn('Authentication SUCCESS: ldap user=user1', logs.output[0])
        self.assertIn('Authentication FAILURE: ldap user=user1', logs.output[1])
        self.assertNotIn('nope', ''.join(logs.output))


class TestDirectoryService(unittest.TestCase):

    def test_connection_failure_is_reported_once(self):
        service = DirectoryService(make_config())
        with patch('ldap_directory.main.fetch_remote_users',
                   side_effect=LDAPConnectionError('refused')) as mock_fetch:
            result = service.preview()
        self.assertTrue(result.is_error)
        self.assertIn('refused', result.message)
        self.assertEqual(mock_fetch.call_count, 1)

    def test_health_check(self):
        directory = populated_directory(0)
        patch_directory(self, directory)
        self.assertEqual(DirectoryService(make_config()).health_check()['status'], 'healthy')

        directory.open_fails = True
        health = DirectoryService(make_config()).health_check()
        self.assertEqual(health['status'], 'unhealthy')
        self.assertEqual(health['checks']['ldap']['status'], 'fail')


class TestCommandLine(unittest.TestCase):

    def setUp(self):
        self.log_dir = tempfile.mkdtemp(prefix='ldap_test_logs_')
        config_data = {
            'ldap': {
                'server_host': 'ldap.example.com',
                'base_dn': 'dc=example,dc=com',
                'bind_dn': 'cn=read-only-admin,dc=example,dc=com',
                'bind_password': 'password',
                'user_filter': USER_FILTER,
                'group_filter': GROUP_FILTER,
                'attributes': {'group_member': 'uniqueMember'}
            },
            'logging': {'log_dir': self.log_dir, 'console_output': False}
        }
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            yaml.safe_dump(config_data, f)
        self.config_path = f.name
        self.addCleanup(os.unlink, f.name)
        patch_directory(self, populated_directory(2))
        manager_patcher = patch('ldap_directory.main.setup_logging')
        manager_patcher.start()
        self.addCleanup(manager_patcher.stop)

    def run_main(self, *argv):
        stdout = io.StringIO()
        with patch.object(sys, 'argv', ['ldap-directory', '--config', self.config_path] + list(argv)), \
                patch('sys.stdout', stdout):
            with self.assertRaises(SystemExit) as context:
                main_module.main()
        return context.exception.code, stdout.getvalue()

    def test_preview(self):
        code, output = self.run_main('--preview')
        self.assertEqual(code, 0)
        self.assertEqual(len(json.loads(output)['users']), 2)

    def test_authenticate(self):
        with patch.dict(os.environ, {'LDAP_USER_PASSWORD': 'pw0'}):
            code, output = self.run_main('--authenticate', 'user0')
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(output), {'authenticated': True})

    def test_authenticate_rejected(self):
        with patch.dict(os.environ, {'LDAP_USER_PASSWORD': 'bad'}):
            code, output = self.run_main('--authenticate', 'user0')
        self.assertEqual(code, 1)
        self.assertEqual(json.loads(output), {'authenticated': False})

    def test_sync_with_local_users(self):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            yaml.safe_dump([{'email': 'user0@example.com', 'active': True}], f)
        self.addCleanup(os.unlink, f.name)

        code, output = self.run_main('--sync', '--local-users', f.name)

        self.assertEqual(code, 0)
        self.assertEqual([u['email'] for u in json.loads(output)['add']], ['user1@example.com'])

    def test_configuration_error(self):
        with patch('sys.stderr', io.StringIO()):
            with patch.object(sys, 'argv', ['ldap-directory', '--config', '/nonexistent.yaml', '--preview']):
                with self.assertRaises(SystemExit) as context:
                    main_module.main()
        self.assertEqual(context.exception.code, 2)


if __name__ == '__main__':
    unittest.main()
