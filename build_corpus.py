#!/usr/bin/env python3
# build_corpus.py
# ──────────────────────────────────────────────────────────────────────────────
# Paper Space Explorer: build a corpus file from a table of papers.
#
# Pipeline
# ────────
# 1. LOAD      papers table (.parquet / .csv / .json): one row per paper,
#              an id column, a text column, any number of facet columns.
# 2. EMBED     SPECTER2 incremental embed (rows that already carry an
#              `embedding` value are left alone) → semantic vectors.
# 3. PROJECT   UMAP on the semantic vectors → 3D display vectors.
# 4. WRITE     wire-format JSON (embeddings[0] semantic, embeddings[1]
#              display), or the parquet layout when OUT ends in .parquet.
#
# Run standalone:
#   python build_corpus.py papers.parquet data/publications.json
#   EXPLORER_EMBED_MODEL=sbert python build_corpus.py papers.csv out.parquet
# ──────────────────────────────────────────────────────────────────────────────

import json
import os
import sys

import numpy as np
import pandas as pd

from explorer_utils import (
    DOCUMENT_TITLE_FIELD,
    ConfigurationError,
    _clean_property,
)


# ══════════════════════════════════════════════════════════════════════════════
# CONFIGURATION
# ══════════════════════════════════════════════════════════════════════════════

EMBED_MODEL = os.environ.get("EXPLORER_EMBED_MODEL", "specter2")

# model name → (Hugging Face id, text column)
MODELS = {
    "specter2": ("allenai/specter2_base", "text"),
    "sbert":    ("sentence-transformers/all-mpnet-base-v2", "abstract"),
}

# UMAP settings for the 3D display projection
UMAP_NEIGHBORS = 15
UMAP_MIN_DIST  = 0.1
UMAP_SEED      = 42

# Columns that never become record properties
NON_PROPERTY_COLUMNS = {"id", "text", "abstract", "embedding", "display_embedding"}


# ══════════════════════════════════════════════════════════════════════════════
# STAGE 1: LOAD
# ══════════════════════════════════════════════════════════════════════════════

def load_papers(path: str) -> pd.DataFrame:
    if not os.path.exists(path):
        raise ConfigurationError(f"Papers file not found: {path}")
    if path.endswith(".parquet"):
        df = pd.read_parquet(path)
    elif path.endswith(".csv"):
        df = pd.read_csv(path)
    else:
        df = pd.read_json(path)
    if "id" not in df.columns:
        raise ConfigurationError(f"{path} has no 'id' column.")
    n_dupes = int(df["id"].duplicated().sum())
    if n_dupes:
        raise ConfigurationError(f"{path} has {n_dupes} duplicate ids.")
    print(f"  {len(df)} rows, {len(df.columns)} columns.")
    return df.reset_index(drop=True)


# ══════════════════════════════════════════════════════════════════════════════
# STAGE 2: EMBED
# ══════════════════════════════════════════════════════════════════════════════

def embed_papers(df: pd.DataFrame, model_name: str = EMBED_MODEL) -> pd.DataFrame:
    """Fill the `embedding` column for rows that do not have one yet."""
    if model_name not in MODELS:
        raise ValueError(f"Unknown model_name: '{model_name}'")
    hf_model_id, text_col = MODELS[model_name]
    if text_col not in df.columns:
        raise ConfigurationError(f"Model {model_name} reads column '{text_col}', "
                                 f"which the papers table does not have.")

    if "embedding" in df.columns:
        needs_embed = df["embedding"].isna()
    else:
        df["embedding"] = None
        needs_embed = pd.Series([True] * len(df))

    n_new = int(needs_embed.sum())
    if not n_new:
        print(f"  All papers already embedded, skipping {model_name.upper()}.")
        return df

    from sentence_transformers import SentenceTransformer

    print(f"  Loading embedding model: {hf_model_id}")
    model = SentenceTransformer(hf_model_id)
    print(f"  Embedding {n_new} paper(s) with {model_name.upper()}...")
    idx   = df.index[needs_embed].tolist()
    texts = df.loc[idx, text_col].fillna("").astype(str).tolist()
    vecs  = model.encode(texts, show_progress_bar=True, batch_size=16,
                         convert_to_numpy=True)
    for i, pos in enumerate(idx):
        df.at[pos, "embedding"] = vecs[i].tolist()
    return df


# ══════════════════════════════════════════════════════════════════════════════
# STAGE 3: PROJECT
# ══════════════════════════════════════════════════════════════════════════════

def project_display(vectors: np.ndarray) -> np.ndarray:
    """Semantic vectors (n × d) → 3D display coordinates (n × 3)."""
    n = len(vectors)
    if n < 3:
        raise ConfigurationError(f"Need at least 3 papers to project, got {n}.")

    import umap as umap_lib

    print(f"  Projecting {n} papers to 3D with UMAP...")
    reducer = umap_lib.UMAP(
        n_components=3, metric="cosine", random_state=UMAP_SEED,
        n_neighbors=min(UMAP_NEIGHBORS, n - 1), min_dist=UMAP_MIN_DIST,
    )
    return reducer.fit_transform(vectors)


# ══════════════════════════════════════════════════════════════════════════════
# STAGE 4: WRITE
# ══════════════════════════════════════════════════════════════════════════════

def assemble_rows(df: pd.DataFrame, display: np.ndarray) -> list[dict]:
    """Build wire-format corpus rows from the embedded table and 3D coords."""
    if len(display) != len(df):
        raise ConfigurationError(
            f"{len(display)} display vectors for {len(df)} papers."
        )
    prop_cols = [c for c in df.columns if c not in NON_PROPERTY_COLUMNS]
    if DOCUMENT_TITLE_FIELD not in prop_cols:
        print(f"  Note: no '{DOCUMENT_TITLE_FIELD}' column, headings fall back to ids.")

    rows = []
    for pos, row in enumerate(df.to_dict(orient="records")):
        text = row.get("text")
        if not isinstance(text, str):
            text = row.get("abstract") if isinstance(row.get("abstract"), str) else ""
        rows.append({
            "id":         _clean_property(row["id"]),
            "properties": {c: _clean_property(row[c]) for c in prop_cols},
            "text":       text,
            "embeddings": [
                {"vector": [float(x) for x in row["embedding"]]},
                {"vector": [float(x) for x in display[pos]]},
            ],
        })
    return rows


def write_corpus(rows: list[dict], out_path: str) -> str:
    parent = os.path.dirname(out_path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    if out_path.endswith(".parquet"):
        frame = pd.DataFrame([{
            "id":                r["id"],
            "text":              r["text"],
            "embedding":         r["embeddings"][0]["vector"],
            "display_embedding": r["embeddings"][1]["vector"],
            **r["properties"],
        } for r in rows])
        frame.to_parquet(out_path, index=False)
    else:
        with open(out_path, "w", encoding="utf-8") as f:
            json.dump(rows, f)
    print(f"  Wrote {len(rows)} records to {out_path}.")
    return out_path


def build_corpus(papers_path: str, out_path: str, model_name: str = EMBED_MODEL) -> str:
    print("\n▶  Stage 1: Loading papers...")
    df = load_papers(papers_path)

    print("\n▶  Stage 2: Embedding...")
    df = embed_papers(df, model_name)

    print("\n▶  Stage 3: 3D projection...")
    vectors = np.array(df["embedding"].tolist(), dtype=np.float32)
    display = project_display(vectors)

    print("\n▶  Stage 4: Writing corpus...")
    return write_corpus(assemble_rows(df, display), out_path)


# ══════════════════════════════════════════════════════════════════════════════
# MAIN
# ══════════════════════════════════════════════════════════════════════════════

if __name__ == "__main__":
    if len(sys.argv) < 3:
        print("Usage: python build_corpus.py PAPERS OUT")
        sys.exit(1)

    print("=" * 60)
    print(f"  Paper Space Explorer: corpus build ({EMBED_MODEL.upper()})")
    print("=" * 60)
    build_corpus(sys.argv[1], sys.argv[2])
    print("\n✓  build_corpus.py complete.")
