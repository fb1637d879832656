from shipci.pipelines import DEFAULT_TARGETS, ci_pipeline, default_pipelines, release_pipeline


def test_ci_pipeline_steps_in_order():
    p = ci_pipeline()
    assert p.name == "CI"
    assert p.env == {"CARGO_TERM_COLOR": "always"}
    assert [(t.event, t.branches) for t in p.triggers] == [("push", ("master",)), ("pull_request", ("master",))]

    (build,) = p.jobs
    assert build.token_scope is None
    assert [s.name for s in build.steps] == [
        "Checkout repository",
        "Build",
        "Check with linter",
        "Check style",
        "Run tests",
    ]
    assert [s.run for s in build.steps[1:]] == [
        "cargo build --verbose",
        "cargo clippy --all-targets --all-features -- -D warnings",
        "cargo fmt --all -- --check",
        "cargo test --verbose",
    ]
    assert build.steps[3].data["check_only"] is True


def test_release_pipeline_matrix():
    p = release_pipeline()
    assert p.fail_fast is False
    assert [(t.event, t.types) for t in p.triggers] == [("release", ("created",))]
    assert [j.target for j in p.jobs] == list(DEFAULT_TARGETS)

    for j in p.jobs:
        assert j.name == f"release {j.target}"
        assert j.env == {"RUSTTARGET": j.target, "EXTRA_FILES": "README.md LICENSE"}
        assert j.token_scope == "release"
        assert [s.kind for s in j.steps] == ["checkout", "release"]
        assert j.steps[1].name == "Compile and release"


def test_default_pipelines():
    assert [p.name for p in default_pipelines()] == ["CI", "Release"]
    assert default_pipelines(color="never")[0].env["CARGO_TERM_COLOR"] == "never"
