"""
I/O layer: observations in, state vectors / regime outputs / model JSON out.

    reader.py    load_observations, load_output, output_path
    writer.py    write_output, write_json
    manifest.py  load_manifest, load_pipeline_config
    model.py     save_model, load_model
"""
