"""Git repository factory for tests that need real repositories."""

from pathlib import Path

import pygit2

MAIN = "main"
REMOTE = "origin"


def signature() -> pygit2.Signature:
    return pygit2.Signature("Pursue Test", "test@example.com")


class GitRepoFactory:
    """Factory for creating git repositories with different configurations."""

    def __init__(self, base_path: Path):
        self.base_path = base_path

    def create_repo(
        self, *, name: str = "repo", initial_files: dict[str, str] | None = None, empty: bool = False
    ) -> Path:
        """Create a repository on branch main.

        Args:
            name: Repository directory name
            initial_files: filename -> content for the initial commit
            empty: If True, leave the branch unborn (no commits)

        Returns:
            Path to the created repository
        """
        repo_path = self.base_path / name
        repo_path.mkdir(parents=True, exist_ok=True)
        repo = pygit2.init_repository(str(repo_path), initial_head=MAIN)
        repo.config["user.name"] = "Pursue Test"
        repo.config["user.email"] = "test@example.com"
        if not empty:
            self.commit(repo_path, initial_files or {"README.md": "# test repo\n"}, "Initial commit")
        return repo_path

    def commit(self, repo_path: Path, files: dict[str, str], message: str = "Update") -> pygit2.Oid:
        """Write files, stage them and commit on the current branch."""
        repo = pygit2.Repository(str(repo_path))
        for filename, content in files.items():
            path = repo_path / filename
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
            repo.index.add(filename)
        repo.index.write()
        tree = repo.index.write_tree()
        parents = [] if repo.head_is_unborn else [repo.head.target]
        return repo.create_commit("HEAD", signature(), signature(), message, tree, parents)

    def with_upstream(self, repo_path: Path, *, ahead: int = 0, behind: int = 0) -> None:
        """Give main a local-only origin/main upstream, diverged by ahead/behind commits.

        No network remote is involved: the remote-tracking ref is written
        directly, as if a fetch had just happened.
        """
        repo = pygit2.Repository(str(repo_path))
        tip = repo.head.target
        tree = repo[tip].tree.id
        for i in range(behind):
            tip = repo.create_commit(None, signature(), signature(), f"Remote change {i + 1}", tree, [tip])
        repo.references.create(f"refs/remotes/{REMOTE}/{MAIN}", tip, force=True)
        repo.remotes.create(REMOTE, str(self.base_path / f"{repo_path.name}-{REMOTE}.git"))
        repo.config[f"branch.{MAIN}.remote"] = REMOTE
        repo.config[f"branch.{MAIN}.merge"] = f"refs/heads/{MAIN}"
        for i in range(ahead):
            self.commit(repo_path, {f"local-{i}.txt": f"local change {i + 1}\n"}, f"Local change {i + 1}")

    def create_clone(self, *, name: str = "clone") -> tuple[Path, Path]:
        """Create a bare origin and a working clone tracking its main branch.

        Returns:
            (origin_path, clone_path)
        """
        source = self.create_repo(name=f"{name}-source")
        origin_path = self.base_path / f"{name}-origin.git"
        pygit2.clone_repository(str(source), str(origin_path), bare=True)
        clone_path = self.base_path / name
        pygit2.clone_repository(str(origin_path), str(clone_path))
        return origin_path, clone_path

    def push_to_origin(self, origin_path: Path, count: int = 1) -> None:
        """Add commits directly to the bare origin's main branch."""
        origin = pygit2.Repository(str(origin_path))
        ref = f"refs/heads/{MAIN}"
        tip = origin.references[ref].target
        tree = origin[tip].tree.id
        for i in range(count):
            tip = origin.create_commit(ref, signature(), signature(), f"Upstream change {i + 1}", tree, [tip])
