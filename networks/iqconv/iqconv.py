import torch
import torch.nn as nn
import torch.nn.functional as F
from pathlib import Path

N_IN = 128
N_LAYER_OUT = 11
CONV_CH = 8
KERNEL = 3
HIDDEN = 32


class IQConv(nn.Module):
    def __init__(self, n_in=N_IN, num_classes=N_LAYER_OUT):
        super(IQConv, self).__init__()
        self.n_in = n_in
        self.flat = CONV_CH * (n_in - KERNEL + 1)
        # Input 2 x n_in (I and Q as channels), output CONV_CH x (n_in - 2)
        self.conv = nn.Conv1d(2, CONV_CH, kernel_size=KERNEL)
        self.dense = nn.Linear(self.flat, HIDDEN)
        # Output: one score per modulation class
        self.output = nn.Linear(HIDDEN, num_classes)

    def forward(self, x):
        x = F.relu(self.conv(x))
        x = x.view(-1, self.flat)
        x = F.relu(self.dense(x))
        x = self.output(x)
        return x


if __name__ == "__main__":
    torch.manual_seed(0)
    model = IQConv(n_in=N_IN, num_classes=N_LAYER_OUT)

    PATH = Path(__file__).with_name("iqconv_model.pt")
    torch.save(model.state_dict(), PATH)

    print(f"IQConv model structure created and saved to {PATH}")
