from pathlib import Path

from modelworks.model_store.classifier import (
    candidate_roots,
    classify,
    classify_folder,
    clean_display_name,
    is_loadable_root,
    resolve_resource_root,
    strip_selection_suffixes,
)
from modelworks.model_store.models import VariantTag


def test_candidate_roots_order_aliases_and_hidden(tmp_path, make_model):
    folder = tmp_path / "Model"
    make_model(folder, "Resources/x.txt", "b/recource/y.txt", "a/z.txt", ".hidden/w.txt")

    roots = candidate_roots(folder)

    assert roots == [
        folder,
        folder / "Resources",
        folder / "a",
        folder / "b",
        folder / "b" / "recource",
    ]
    assert folder / ".hidden" not in roots
    assert len(roots) == len(set(roots))


def test_single_weak_signal_is_unrecognized(tmp_path, make_model):
    folder = make_model(tmp_path / "Lonely", "Unet.mlmodelc")
    assert classify_folder(folder).variant is VariantTag.UNRECOGNIZED


def test_two_weak_signals_make_legacy(tmp_path, make_model):
    folder = make_model(tmp_path / "Pair", "Unet.mlmodelc", "VAEDecoder.mlmodelc")
    result = classify_folder(folder)
    assert result.variant is VariantTag.LEGACY
    assert result.root == folder


def test_appledouble_files_are_not_components(tmp_path):
    folder = tmp_path / "Unpacked"
    (folder / "nested").mkdir(parents=True)
    for name in (
        "._Unet.mlmodelc",
        "._VAE.mlmodelc",
        "nested/._MultiModalDiffusionTransformer.mlmodelc",
    ):
        (folder / name).write_bytes(b"\0")

    assert classify_folder(folder).variant is VariantTag.UNRECOGNIZED


def test_component_match_is_case_insensitive(tmp_path, make_model):
    folder = make_model(tmp_path / "Lower", "unet.MLMODELC", "textencoder.mlmodelc")
    assert classify([folder]) is VariantTag.LEGACY


def test_text_encoder_two_is_variant_b(tmp_path, make_model):
    folder = make_model(
        tmp_path / "SDXLTurbo",
        "Unet.mlmodelc",
        "TextEncoder.mlmodelc",
        "TextEncoder2.mlmodelc",
        "VAEDecoder.mlmodelc",
    )
    assert classify_folder(folder).variant is VariantTag.VARIANT_B


def test_variant_b_never_comes_from_deep_scan(tmp_path, make_model):
    folder = make_model(tmp_path / "Deep", "outer/inner/TextEncoder2.mlmodelc")
    assert classify_folder(folder).variant is VariantTag.UNRECOGNIZED


def test_variant_c_is_found_deep(tmp_path, make_model):
    folder = make_model(
        tmp_path / "SD3",
        "Unet.mlmodelc",
        "TextEncoder.mlmodelc",
        "a/b/c/MultiModalDiffusionTransformer.mlmodelc",
    )
    assert classify_folder(folder).variant is VariantTag.VARIANT_C


def test_accelerated_layout_wins_over_compiled_graph_files(tmp_path, make_model):
    folder = make_model(
        tmp_path / "Hybrid",
        "unet/config.json",
        "text_encoder/config.json",
        "Unet.mlmodelc",
        "TextEncoder2.mlmodelc",
        "extra/MultiModalDiffusionTransformer.mlmodelc",
    )
    assert classify_folder(folder).variant is VariantTag.ACCELERATED


def test_accelerated_accepts_second_text_encoder(tmp_path, make_model):
    folder = make_model(tmp_path / "XL", "unet/config.json", "text_encoder_2/config.json")
    assert classify_folder(folder).variant is VariantTag.ACCELERATED


def test_unet_config_alone_is_not_accelerated(tmp_path, make_model):
    folder = make_model(tmp_path / "Half", "unet/config.json")
    assert classify_folder(folder).variant is VariantTag.UNRECOGNIZED


def test_resources_alias_root_is_reported(tmp_path, make_model):
    folder = make_model(
        tmp_path / "Wrapped",
        "pkg/Recources/Unet.mlmodelc",
        "pkg/Recources/TextEncoder.mlmodelc",
    )
    result = classify_folder(folder)
    assert result.variant is VariantTag.LEGACY
    assert result.root == folder / "pkg" / "Recources"


def test_missing_folder_classifies_without_raising(tmp_path):
    assert classify_folder(tmp_path / "nope").variant is VariantTag.UNRECOGNIZED


def test_resolve_prefers_tokenizer_files(tmp_path, make_model):
    folder = tmp_path / "Split"
    make_model(folder, "a/Unet.mlmodelc", "a/TextEncoder.mlmodelc")
    make_model(
        folder,
        "b/Unet.mlmodelc",
        "b/TextEncoder.mlmodelc",
        "b/merges.txt",
        "b/vocab.json",
    )
    assert resolve_resource_root(folder) == folder / "b"


def test_resolve_penalises_safety_checker(tmp_path, make_model):
    folder = tmp_path / "Safe"
    make_model(folder, "a/Unet.mlmodelc", "a/VAEDecoder.mlmodelc", "a/SafetyChecker.mlmodelc")
    make_model(folder, "b/Unet.mlmodelc", "b/VAEDecoder.mlmodelc")
    assert resolve_resource_root(folder) == folder / "b"


def test_resolve_returns_first_accelerated_candidate(tmp_path, make_model):
    folder = tmp_path / "Acc"
    make_model(folder, "x/unet/config.json", "x/text_encoder/config.json")
    make_model(folder, "y/Unet.mlmodelc", "y/TextEncoder.mlmodelc", "y/merges.txt")
    assert resolve_resource_root(folder) == folder / "x"


def test_resolve_falls_back_to_folder(tmp_path, make_model):
    folder = make_model(tmp_path / "Empty", "notes.txt")
    assert resolve_resource_root(folder) == folder


def test_is_loadable_root(tmp_path, make_model):
    assert is_loadable_root(make_model(tmp_path / "a", "deep/thing.mlmodelc"))
    assert is_loadable_root(
        make_model(
            tmp_path / "b",
            "model_index.json",
            "VAEEncoder.mlmodelc",
            "VAEDecoder.mlmodelc",
        )
    )
    assert not is_loadable_root(make_model(tmp_path / "c", "readme.txt"))


def test_display_and_selection_names():
    assert clean_display_name("Flux (MLX)") == "Flux"
    assert clean_display_name("SD15 (coreml)") == "SD15"
    assert clean_display_name("SD15 (Core ML)") == "SD15"
    assert strip_selection_suffixes("SDXL (SD-SDXL)") == "SDXL"
    assert strip_selection_suffixes("SD3 Medium (SD3+)") == "SD3 Medium"
    assert strip_selection_suffixes("Plain") == "Plain"


def test_candidate_roots_of_missing_folder(tmp_path):
    missing = tmp_path / "gone"
    assert candidate_roots(missing) == [Path(missing)]
