"""Configuration models for the BrowserStack session launcher."""
from __future__ import annotations

import os
from typing import Any, Callable, Dict, List, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, Field

BUILD_NAME_ENV = "BROWSERSTACK_BUILD_NAME"
RERUN_ENV = "BROWSERSTACK_RERUN"
RERUN_TESTS_ENV = "BROWSERSTACK_RERUN_TESTS"


class ServiceOptions(BaseModel):
    """Options of the browserstack service block (camelCase keys accepted)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Kept untyped so malformed descriptors reach validate_app and get its messages.
    app: Any = None
    browserstack_local: bool = Field(default=False, alias="browserstackLocal")
    forced_stop: bool = Field(default=False, alias="forcedStop")
    opts: Dict[str, Any] = Field(default_factory=dict)
    build_identifier: str | None = Field(default=None, alias="buildIdentifier")


class RunnerConfig(BaseModel):
    """The parts of the host runner config the launcher reads or rewrites."""

    user: str | None = None
    key: str | None = None
    specs: List[str] = Field(default_factory=list)


class CiInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    build_number: str | None = None


def _is_true(value: str | None) -> bool:
    return str(value).lower() == "true"


def _any_set(env: Mapping[str, str], *names: str) -> bool:
    return any(env.get(name) for name in names)


# (provider, detector, env var carrying the build number)
_CI_PROVIDERS: List[Tuple[str, Callable[[Mapping[str, str]], bool], str | None]] = [
    ("Jenkins", lambda env: _any_set(env, "JENKINS_URL", "JENKINS_HOME"), "BUILD_NUMBER"),
    ("CircleCI", lambda env: _is_true(env.get("CI")) and _is_true(env.get("CIRCLECI")), "CIRCLE_BUILD_NUM"),
    ("Travis CI", lambda env: _is_true(env.get("CI")) and _is_true(env.get("TRAVIS")), "TRAVIS_BUILD_NUMBER"),
    ("Codeship", lambda env: _is_true(env.get("CI")) and env.get("CI_NAME") == "codeship", None),
    (
        "Bitbucket",
        lambda env: bool(env.get("BITBUCKET_BRANCH") and env.get("BITBUCKET_COMMIT")),
        "BITBUCKET_BUILD_NUMBER",
    ),
    ("Drone", lambda env: _is_true(env.get("CI")) and _is_true(env.get("DRONE")), "DRONE_BUILD_NUMBER"),
    ("Semaphore", lambda env: _is_true(env.get("CI")) and _is_true(env.get("SEMAPHORE")), "SEMAPHORE_JOB_ID"),
    ("GitLab", lambda env: _is_true(env.get("CI")) and _is_true(env.get("GITLAB_CI")), "CI_JOB_ID"),
    ("Buildkite", lambda env: _is_true(env.get("CI")) and _is_true(env.get("BUILDKITE")), "BUILDKITE_BUILD_NUMBER"),
    (
        "Visual Studio Team Services",
        lambda env: _is_true(env.get("TF_BUILD")) and bool(env.get("TF_BUILD_BUILDNUMBER")),
        "TF_BUILD_BUILDNUMBER",
    ),
    ("Appveyor", lambda env: _is_true(env.get("APPVEYOR")), "APPVEYOR_BUILD_NUMBER"),
    ("Azure CI", lambda env: bool(env.get("AZURE_HTTP_USER_AGENT") and env.get("TF_BUILD")), "BUILD_BUILDID"),
    (
        "AWS CodeBuild",
        lambda env: _any_set(
            env, "CODEBUILD_BUILD_ID", "CODEBUILD_RESOLVED_SOURCE_VERSION", "CODEBUILD_SOURCE_VERSION"
        ),
        "CODEBUILD_BUILD_ID",
    ),
    ("Bamboo", lambda env: _any_set(env, "bamboo_buildNumber"), "bamboo_buildNumber"),
    (
        "Wercker",
        lambda env: _any_set(env, "WERCKER", "WERCKER_MAIN_PIPELINE_STARTED"),
        "WERCKER_MAIN_PIPELINE_STARTED",
    ),
    ("Google Cloud", lambda env: _any_set(env, "GCP_PROJECT", "GCLOUD_PROJECT", "GOOGLE_CLOUD_PROJECT"), None),
    ("Shippable", lambda env: _any_set(env, "SHIPPABLE"), "SHIPPABLE_BUILD_NUMBER"),
    ("Netlify", lambda env: _is_true(env.get("NETLIFY")), "BUILD_ID"),
    ("Github Actions", lambda env: _is_true(env.get("GITHUB_ACTIONS")), "GITHUB_RUN_ID"),
    ("Vercel", lambda env: _is_true(env.get("CI")) and env.get("VERCEL") == "1", None),
    ("Teamcity", lambda env: _any_set(env, "TEAMCITY_VERSION"), "BUILD_NUMBER"),
    (
        "Concourse",
        lambda env: _any_set(env, "CONCOURSE", "CONCOURSE_URL", "CONCOURSE_USERNAME", "CONCOURSE_TEAM"),
        "BUILD_ID",
    ),
    ("GoCD", lambda env: _any_set(env, "GO_JOB_NAME"), "GO_PIPELINE_COUNTER"),
    ("CodeFresh", lambda env: _any_set(env, "CF_BUILD_ID"), "CF_BUILD_ID"),
]


def detect_ci(environ: Mapping[str, str]) -> CiInfo | None:
    """Return the first CI provider whose marker variables are present."""
    for name, detector, build_number_var in _CI_PROVIDERS:
        if detector(environ):
            build_number = environ.get(build_number_var) if build_number_var else None
            return CiInfo(name=name, build_number=build_number or None)
    return None


class EnvironmentSnapshot(BaseModel):
    """Process environment as seen once at launcher construction."""

    model_config = ConfigDict(frozen=True)

    ci: CiInfo | None = None
    build_name_override: str | None = None
    rerun: bool = False
    rerun_tests: List[str] = Field(default_factory=list)

    @property
    def ci_build_number(self) -> str | None:
        """Build number usable for ${BUILD_NUMBER}, only when a CI provider supplies one."""
        if self.ci is None:
            return None
        return self.ci.build_number

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] | None = None) -> "EnvironmentSnapshot":
        env = os.environ if environ is None else environ
        raw_tests = env.get(RERUN_TESTS_ENV) or ""
        return cls(
            ci=detect_ci(env),
            build_name_override=env.get(BUILD_NAME_ENV) or None,
            rerun=_is_true(env.get(RERUN_ENV)),
            rerun_tests=[item.strip() for item in raw_tests.split(",") if item.strip()],
        )
