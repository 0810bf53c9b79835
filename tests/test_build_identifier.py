import json

from bstack_session.config import CiInfo, EnvironmentSnapshot
from bstack_session.tools.build_cache import BuildNameCache
from bstack_session.tools.build_identifier import BuildIdentifierResolver

from conftest import FIXED_NOW


def _caps(template, build_name="browserstack wdio build"):
    options = {"buildIdentifier": template}
    if build_name is not None:
        options["buildName"] = build_name
    return [{"bstack:options": options}]


def _resolver(build_cache, environment=None, **kwargs):
    return BuildIdentifierResolver(
        environment=environment or EnvironmentSnapshot(),
        cache=build_cache,
        clock=lambda: FIXED_NOW,
        **kwargs,
    )


def test_build_number_counts_up_across_invocations(build_cache):
    first = _caps("#${BUILD_NUMBER}", "demo")
    _resolver(build_cache).resolve(first)
    assert first[0]["bstack:options"]["buildIdentifier"] == "#1"

    second = _caps("#${BUILD_NUMBER}", "demo")
    _resolver(build_cache).resolve(second)
    assert second[0]["bstack:options"]["buildIdentifier"] == "#2"


def test_date_time_is_substituted(build_cache, cache_path):
    caps = _caps("${DATE_TIME}")
    _resolver(build_cache).resolve(caps)
    resolved = caps[0]["bstack:options"]["buildIdentifier"]
    assert resolved == "09-Mar-2024 14:05:07"
    assert "${DATE_TIME}" not in resolved
    assert not cache_path.exists()


def test_date_time_with_real_clock(build_cache):
    caps = _caps("${DATE_TIME}")
    BuildIdentifierResolver(environment=EnvironmentSnapshot(), cache=build_cache).resolve(caps)
    resolved = caps[0]["bstack:options"]["buildIdentifier"]
    assert resolved != "${DATE_TIME}"
    assert "${DATE_TIME}" not in resolved


def test_both_tokens_in_one_template(build_cache):
    caps = _caps("#${BUILD_NUMBER} ${DATE_TIME}")
    _resolver(build_cache).resolve(caps)
    assert caps[0]["bstack:options"]["buildIdentifier"] == "#1 09-Mar-2024 14:05:07"


def test_ci_build_number_skips_cache(build_cache, cache_path):
    env = EnvironmentSnapshot(ci=CiInfo(name="Jenkins", build_number="121"))
    caps = _caps("${BUILD_NUMBER}")
    _resolver(build_cache, env).resolve(caps)
    assert caps[0]["bstack:options"]["buildIdentifier"] == "CI 121"
    assert not cache_path.exists()


def test_ci_without_build_number_falls_back_to_cache(build_cache):
    env = EnvironmentSnapshot(ci=CiInfo(name="Codeship"))
    caps = _caps("${BUILD_NUMBER}")
    _resolver(build_cache, env).resolve(caps)
    assert caps[0]["bstack:options"]["buildIdentifier"] == "1"


def test_missing_build_name_removes_identifier(build_cache, cache_path):
    caps = _caps("#${BUILD_NUMBER}", build_name=None)
    _resolver(build_cache).resolve(caps)
    assert caps == [{"bstack:options": {}}]
    assert not cache_path.exists()


def test_build_name_env_override_removes_identifier(build_cache):
    env = EnvironmentSnapshot(build_name_override="browserstack wdio build")
    caps = _caps("#${BUILD_NUMBER}")
    _resolver(build_cache, env).resolve(caps)
    assert caps == [{"bstack:options": {"buildName": "browserstack wdio build"}}]


def test_entries_without_template_are_untouched(build_cache, cache_path):
    caps = [{}, {"bstack:options": {"buildName": "demo"}}]
    _resolver(build_cache).resolve(caps)
    assert caps == [{}, {"bstack:options": {"buildName": "demo"}}]
    assert not cache_path.exists()


def test_unusable_cache_leaves_template(build_cache, cache_path):
    cache_path.parent.mkdir(parents=True)
    cache_path.write_text("{broken", encoding="utf-8")
    caps = _caps("#${BUILD_NUMBER} ${DATE_TIME}")
    _resolver(build_cache).resolve(caps)
    assert caps[0]["bstack:options"]["buildIdentifier"] == "#${BUILD_NUMBER} ${DATE_TIME}"


def test_entries_of_one_run_share_a_counter(build_cache, cache_path):
    caps = _caps("#${BUILD_NUMBER}") + _caps("#${BUILD_NUMBER}")
    _resolver(build_cache).resolve(caps)
    assert [entry["bstack:options"]["buildIdentifier"] for entry in caps] == ["#1", "#1"]
    assert json.loads(cache_path.read_text(encoding="utf-8")) == {
        "browserstack wdio build": {"identifier": 1}
    }


def test_override_replaces_entry_templates(build_cache):
    caps = {
        "chromeBrowser": {
            "capabilities": {
                "bstack:options": {"buildName": "browserstack wdio build", "buildIdentifier": "test ${BUILD_NUMBER}"}
            }
        }
    }
    _resolver(build_cache, override="#${BUILD_NUMBER}").resolve(caps)
    assert caps["chromeBrowser"]["capabilities"]["bstack:options"]["buildIdentifier"] == "#1"


def test_override_on_legacy_caps(build_cache):
    caps = [{"build": "browserstack wdio build"}, {}]
    _resolver(build_cache, override="#${BUILD_NUMBER}").resolve(caps)
    assert caps == [{"build": "browserstack wdio build", "browserstack.buildIdentifier": "#1"}, {}]


def test_legacy_identifier_without_build_is_deleted(build_cache):
    caps = [{"browserstack.buildIdentifier": "#${BUILD_NUMBER}"}]
    _resolver(build_cache, override="#${BUILD_NUMBER}").resolve(caps)
    assert caps == [{}]


def test_cache_is_consulted_per_build_name(cache_path):
    calls = []

    class RecordingCache(BuildNameCache):
        def next_build_number(self, build_name):
            calls.append(build_name)
            return 7

    caps = _caps("${BUILD_NUMBER}", "a") + _caps("${BUILD_NUMBER}", "b") + _caps("${BUILD_NUMBER}", "a")
    _resolver(RecordingCache(cache_path=cache_path)).resolve(caps)
    assert calls == ["a", "b"]
