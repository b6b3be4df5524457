"""
Default configuration for GAN training on a folder of 64x64 RGB images.
"""

# Model configuration
MODEL_CONFIG = {
    'image_size': 64,
    'channels': 3,
    'latent_size': 100,
    'generator_dims': [1024, 512, 256, 128],
    'discriminator_dims': [128, 256, 512, 1024],
    'kernel_size': 5,
    'anti_checkerboard': True,
    'batch_norm': False,
    'dropout': 0.0,
    'leaky_relu_alpha': 0.2,
    'l2_scale': 1e-4,
}

# Training configuration
TRAINING_CONFIG = {
    'num_epochs': None,  # until interrupted
    'batch_size': 10,
    'learning_rate': 2e-4,
    'adam_beta1': 0.5,
    'adam_beta2': 0.999,
    'soft_one': 0.95,
    'seed': None,
    'device': 'auto',
    'track_memory': True,
}

# Data configuration
DATA_CONFIG = {
    'dataset_size': 22,
    'dataset_path': 'data/dataset.bin',
    'inputs_path': 'data/inputs',
}

# Paths configuration
PATHS_CONFIG = {
    'checkpoint_dir': 'checkpoints',
    'log_dir': 'logs',
    'tensorboard_dir': 'tensorboard',
    'preview_path': 'preview/preview.png',
    'preview_scale': 500,
    'checkpoints': True,
    'recover': False,
    'save_every': 1,
    'checkpoint_failure_fatal': True,
}

# Combine all configurations
DEFAULT_CONFIG = {
    **MODEL_CONFIG,
    **TRAINING_CONFIG,
    **DATA_CONFIG,
    **PATHS_CONFIG,
}
