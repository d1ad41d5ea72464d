import re

import pytest

from naisd.naming import env_var_name, sanitize, sanitize_dns_label, secret_key_name

SAMPLES = [
    "test.resource",
    "colon:are:not:allowed",
    "dots.are.not.allowed",
    "foo.var-with.mixed_stuff",
    "myappDB",
    "..leading.and.trailing..",
    "a--b__c..d",
    "UPPER_lower.Mixed:9",
]


class TestSanitize:

    def test_dots_and_case(self):
        assert env_var_name("test.resource", "key") == "TEST_RESOURCE_KEY"
        assert sanitize("foo.var-with.mixed_stuff") == "FOO_VAR_WITH_MIXED_STUFF"

    def test_colons(self):
        assert env_var_name("colon:are:not:allowed", "secretkey") == "COLON_ARE_NOT_ALLOWED_SECRETKEY"

    def test_runs_collapse_and_edges_trimmed(self):
        assert sanitize("a--b__c..d") == "A_B_C_D"
        assert sanitize("..leading.and.trailing..") == "LEADING_AND_TRAILING"

    def test_empty_string(self):
        assert sanitize("") == ""
        assert sanitize("...") == ""

    @pytest.mark.parametrize("raw", SAMPLES)
    def test_output_is_legal_and_idempotent(self, raw):
        name = sanitize(raw)
        assert re.match(r"^[A-Z0-9_]+$", name)
        assert not name.startswith("_") and not name.endswith("_")
        assert sanitize(name) == name


class TestSanitizeDnsLabel:

    def test_lowercases_and_dashes(self):
        assert sanitize_dns_label("key_underscore_Upper") == "key-underscore-upper"

    def test_trims_and_truncates(self):
        label = sanitize_dns_label("-" + "a" * 62 + ".b")
        assert len(label) <= 63
        assert re.match(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$", label)

    def test_empty_string(self):
        assert sanitize_dns_label("") == ""


class TestSecretKeyName:

    def test_lowercase_underscore_variant(self):
        assert secret_key_name("r1.alias", "password") == "r1_alias_password"
        assert secret_key_name("r1", "password") == "r1_password"

    def test_matches_env_name(self):
        assert secret_key_name("srvapp", "keystore.jks").upper() == env_var_name("srvapp", "keystore.jks")
