"""
Small grayscale configuration for quick smoke runs on CPU.
"""

# Model configuration
MODEL_CONFIG = {
    'image_size': 16,
    'channels': 1,
    'latent_size': 8,
    'generator_dims': [16, 8],
    'discriminator_dims': [8, 16],
    'kernel_size': 3,
}

# Training configuration
TRAINING_CONFIG = {
    'num_epochs': 2,
    'batch_size': 4,
    'learning_rate': 2e-4,
    'soft_one': 0.9,
    'seed': 42,
    'device': 'cpu',
}

# Paths configuration
PATHS_CONFIG = {
    'dataset_size': 10,
    'dataset_path': 'data/test_dataset.bin',
    'inputs_path': 'data/test_inputs',
    'checkpoint_dir': 'checkpoints/test',
    'log_dir': 'logs/test',
    'tensorboard_dir': None,
    'preview_path': None,
}

# Combine all configurations
DEFAULT_CONFIG = {
    **MODEL_CONFIG,
    **TRAINING_CONFIG,
    **PATHS_CONFIG,
}
