"""Durable Functions activity functions.

Each activity performs a single unit of work within an orchestration:
- search_scenes: Query the imagery provider and register scenes in the catalog
- preprocess_scene: Download, correct, mask, convert and upload one scene
- run_analysis: Execute one analysis job end to end

The preprocessing stages (download_scene, correct_atmosphere,
mask_clouds, convert_cog, upload_scene) are plain functions composed by
preprocess_scene.
"""
