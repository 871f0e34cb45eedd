"""Tests for input hashing and build context readers."""
from dockplan.dsl import stage
from dockplan.fingerprint import (
    FileContentReader,
    MemoryContentReader,
    compute_fingerprint,
    hash_inputs,
    matches_any,
    parse_ignore_file,
)


class TestPatterns:
    def test_star_stays_inside_segment(self):
        assert matches_any("app.py", ["*.py"])
        assert not matches_any("src/app.py", ["*.py"])

    def test_double_star_spans_directories(self):
        assert matches_any("src/app/main.py", ["src/**"])
        assert matches_any("a/b/c.pyc", ["**/*.pyc"])
        assert matches_any("c.pyc", ["**/*.pyc"])

    def test_parent_directory_match(self):
        assert matches_any("node_modules/x/index.js", ["node_modules"])

    def test_parse_ignore_file(self):
        text = "# comment\n\nnode_modules\n/build\n*.log\n!keep.log\n"
        excludes, includes = parse_ignore_file(text)
        assert excludes == ["node_modules", "build", "*.log"]
        assert includes == ["keep.log"]


class TestHashInputs:
    def test_same_content_same_hash(self, reader):
        h1, _ = hash_inputs(reader, ["src/**"])
        h2, _ = hash_inputs(MemoryContentReader(dict(reader.files)), ["src/**"])
        assert h1 == h2

    def test_one_byte_changes_hash(self, reader):
        before, _ = hash_inputs(reader, ["requirements.txt"])
        reader.files["requirements.txt"] = b"click\npydantic\nX"
        after, _ = hash_inputs(reader, ["requirements.txt"])
        assert before != after

    def test_pattern_order_does_not_matter(self, reader):
        h1, _ = hash_inputs(reader, ["README.md", "src/**"])
        h2, _ = hash_inputs(reader, ["src/**", "README.md"])
        assert h1 == h2

    def test_missing_patterns_are_recorded(self, reader):
        _, manifest = hash_inputs(reader, ["does-not-exist.txt"])
        assert manifest["missing"] == ["does-not-exist.txt"]
        assert manifest["files"] == []

    def test_rename_changes_hash(self):
        a = MemoryContentReader({"a.txt": b"same"})
        b = MemoryContentReader({"b.txt": b"same"})
        assert hash_inputs(a, ["*.txt"])[0] != hash_inputs(b, ["*.txt"])[0]


class TestComputeFingerprint:
    def test_instruction_text_is_hashed(self, reader):
        s1 = stage("A", "RUN make", files=["README.md"])
        s2 = stage("A", "RUN make all", files=["README.md"])
        assert compute_fingerprint(s1, {}, reader) != compute_fingerprint(s2, {}, reader)

    def test_args_are_hashed(self, reader):
        s1 = stage("A", "RUN make", args={"ENV": "dev"})
        s2 = stage("A", "RUN make", args={"ENV": "prod"})
        assert compute_fingerprint(s1, {}, reader).digest != compute_fingerprint(s2, {}, reader).digest

    def test_upstream_digest_is_hashed(self, reader):
        up1 = compute_fingerprint(stage("A", "RUN a"), {}, reader)
        up2 = compute_fingerprint(stage("A", "RUN a2"), {}, reader)
        b = stage("B", "COPY --from=A / /", copy_from=["A"])
        assert compute_fingerprint(b, {"A": up1}, reader) != compute_fingerprint(b, {"A": up2}, reader)

    def test_manifest_explains_digest(self, reader):
        fp = compute_fingerprint(stage("A", "RUN a", files=["requirements.txt"]), {}, reader)
        assert fp.manifest["payload"]["instructions"] == ["RUN a"]
        assert fp.manifest["inputs"]["files"][0][0] == "requirements.txt"
        assert len(fp.digest) == 64
        assert fp.short == fp.digest[:12]


class TestFileContentReader:
    def test_expand_and_default_excludes(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "a.py").write_text("a")
        (tmp_path / "src" / "a.pyc").write_bytes(b"\x00")
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "HEAD").write_text("ref")

        reader = FileContentReader(tmp_path)
        assert reader.expand("src/") == ["src/a.py"]
        assert reader.expand("**/*") == ["src/a.py"]

    def test_dockerignore_with_reinclude(self, tmp_path):
        (tmp_path / "logs").mkdir()
        (tmp_path / "logs" / "debug.log").write_text("x")
        (tmp_path / "logs" / "keep.log").write_text("y")
        (tmp_path / ".dockerignore").write_text("*.log\nlogs/*.log\n!logs/keep.log\n")

        reader = FileContentReader(tmp_path)
        assert reader.expand("logs") == ["logs/keep.log"]

    def test_read_chunks(self, tmp_path):
        (tmp_path / "f.bin").write_bytes(b"abc")
        reader = FileContentReader(tmp_path)
        assert b"".join(reader.read_chunks("f.bin")) == b"abc"
