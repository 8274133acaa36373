def relativize(file_path: str, project_path: str | None) -> str:
    """Strip the project prefix from paths inside the project; leave others untouched."""
    if not project_path:
        return file_path
    root = project_path.rstrip("/")
    if file_path == root:
        return "."
    if not file_path.startswith(root + "/"):
        return file_path
    return file_path[len(root) + 1 :]
