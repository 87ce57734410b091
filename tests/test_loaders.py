from tmtools.loaders.bulk_loader import UserTerritory2AssociationLoader


def test_load_resolves_territory2_ids(transformed, file_paths) -> None:
    loader = UserTerritory2AssociationLoader(transformed, file_paths)

    (result,) = loader.load()

    assert result.success
    assert result.records_processed == 4
    assert result.csv_path == "tm2-dataload/load-data/UserTerritory2Association.csv"
    (call,) = transformed.calls_to("bulk_load")
    assert call[2:] == ("UserTerritory2Association", "insert")
    lines = loader.load_csv.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "UserId,Territory2Id"
    assert all(line.split(",")[1].startswith("0MI2") for line in lines[1:])


def test_unresolved_territories_fail_the_load(transformed, file_paths) -> None:
    transformed.territory2_rows = [r for r in transformed.territory2_rows if r["DeveloperName"] != "East"]

    (result,) = UserTerritory2AssociationLoader(transformed, file_paths).load()

    assert not result.success
    assert result.records_processed == 3
    assert result.records_failed == 1
    assert "missing from the target org" in result.error


def test_nothing_to_load_skips_the_bulk_job(transformed, file_paths) -> None:
    transformed.territory2_rows = []

    (result,) = UserTerritory2AssociationLoader(transformed, file_paths).load()

    assert transformed.calls_to("bulk_load") == []
    assert result.records_failed == 4
    assert not result.success
