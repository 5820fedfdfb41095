#!/usr/bin/env python3
"""
Unit tests for password verification against the directory.
"""

import os
import sys
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fake_ldap import FakeDirectory, make_config, patch_directory, SERVICE_DN
from ldap_directory.auth import authenticate, verify_credentials
from ldap_directory.ldap_client import DirectoryConnection

JDOE_DN = 'uid=jdoe,ou=people,dc=example,dc=com'


class TestAuthenticate(unittest.TestCase):

    def setUp(self):
        self.directory = FakeDirectory()
        self.directory.add_entry(JDOE_DN, password='secret', uid=['jdoe'], mail=['jdoe@example.com'])
        patch_directory(self, self.directory)
        self.config = make_config()

    def test_correct_password(self):
        self.assertTrue(authenticate(self.config, 'jdoe', 'secret'))

        connection = self.directory.connections[0]
        self.assertEqual(connection.search_calls, ['(uid=jdoe)'])
        self.assertEqual(connection.bind_calls, [SERVICE_DN, JDOE_DN])
        self.assertTrue(connection.unbound)

    def test_wrong_password(self):
        self.assertFalse(authenticate(self.config, 'jdoe', 'wrong'))
        self.assertTrue(self.directory.connections[0].unbound)

    def test_unknown_user(self):
        self.assertFalse(authenticate(self.config, 'nobody', 'secret'))
        self.assertEqual(self.directory.connections[0].bind_calls, [SERVICE_DN])

    def test_ambiguous_user_fails_closed(self):
        self.directory.add_entry('uid=jdoe,ou=contractors,dc=example,dc=com', password='secret', uid=['jdoe'])

        with self.assertLogs('security', level='WARNING') as logs:
            outcome = verify_credentials(self.config, 'jdoe', 'secret')

        self.assertIn('ambiguous directory match', logs.output[0])
        self.assertFalse(outcome)
        self.assertIn('AmbiguousMatchError', outcome.reason)
        self.assertEqual(self.directory.connections[0].bind_calls, [SERVICE_DN])

    def test_service_bind_failure(self):
        outcome = verify_credentials(make_config(bind_password='wrong'), 'jdoe', 'secret')
        self.assertFalse(outcome.success)
        self.assertIn('BindError', outcome.reason)

    def test_unreachable_directory(self):
        self.directory.open_fails = True
        self.assertFalse(authenticate(self.config, 'jdoe', 'secret'))

    def test_search_error(self):
        self.directory.failing_filters.add('(uid=jdoe)')
        self.assertFalse(authenticate(self.config, 'jdoe', 'secret'))

    def test_empty_password_never_reaches_directory(self):
        self.assertFalse(authenticate(self.config, 'jdoe', ''))
        self.assertFalse(authenticate(self.config, '', 'secret'))
        self.assertEqual(self.directory.connections, [])

    def test_username_is_escaped(self):
        self.assertFalse(authenticate(self.config, '*', 'secret'))
        self.assertEqual(self.directory.connections[0].search_calls, ['(uid=\\2a)'])

    def test_failure_reasons_are_indistinguishable(self):
        results = {
            authenticate(self.config, 'jdoe', 'wrong'),
            authenticate(self.config, 'nobody', 'wrong'),
        }
        self.directory.open_fails = True
        results.add(authenticate(self.config, 'jdoe', 'secret'))
        self.assertEqual(results, {False})

    def test_program_errors_propagate(self):
        with patch.object(DirectoryConnection, 'bind_end_user', side_effect=TypeError('bug')):
            with self.assertRaises(TypeError):
                authenticate(self.config, 'jdoe', 'secret')


if __name__ == '__main__':
    unittest.main()
