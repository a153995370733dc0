"""Backend-shaped payload builders shared by the tests."""


def make_game_info(item_id, name=None, size=1024, manifest_hash=None, key_images=None, version="1.0.0"):
    """Game record as `get_installed_games` returns it."""
    name = name or item_id.title()
    metadata = None
    if key_images is not None:
        metadata = {"id": item_id, "title": name, "description": "", "keyImages": key_images}
    return {
        "display_name": name,
        "app_name": f"{item_id}-app",
        "install_location": f"C:/Games/{name}",
        "install_size": size,
        "version": version,
        "catalog_namespace": "ns",
        "catalog_item_id": item_id,
        "metadata": metadata,
        "installation_guid": f"{item_id}-guid",
        "manifest_hash": manifest_hash or f"{item_id}-hash",
    }
