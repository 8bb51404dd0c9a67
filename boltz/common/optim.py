from collections.abc import Callable, Iterable

import torch


class LookaheadMomentum(torch.optim.Optimizer):
    def __init__(self,
                 params: Iterable[torch.Tensor],
                 lr: float,
                 momentum: float = 0.9):
        """Gradient descent with a Nesterov-style momentum lookahead.

        Usage per step is:
            1. lookahead(): params += momentum * velocity
            2. compute gradients *at the shifted parameters* and store them in .grad
            3. step(): velocity = momentum * velocity - lr * grad; params -= lr * grad

        Together, 1. and 3. move the parameters by exactly the new velocity. The gradients do not have to come from
        autograd; assigning to .grad directly works just as well (which is what the RBM trainer does).

        Parameters:
            params: Parameters to optimize.
            lr: Learning rate. Can be changed by learning rate schedulers as usual.
            momentum: Guess what.
        """
        if lr < 0:
            raise ValueError(f"Invalid learning rate {lr}.")
        if not 0 <= momentum < 1:
            raise ValueError(f"Momentum should be in [0, 1), you passed {momentum}")
        super().__init__(params, dict(lr=lr, momentum=momentum))

    @torch.no_grad()
    def lookahead(self):
        """Move parameters along the current velocity. Does nothing before the first step."""
        for group in self.param_groups:
            for param in group["params"]:
                velocity = self.state[param].get("velocity")
                if velocity is not None:
                    param.add_(velocity, alpha=group["momentum"])

    @torch.no_grad()
    def step(self,
             closure: Callable[[], float] | None = None) -> float | None:
        loss = None
        if closure is not None:
            with torch.enable_grad():
                loss = closure()

        for group in self.param_groups:
            for param in group["params"]:
                if param.grad is None:
                    continue
                state = self.state[param]
                if "velocity" not in state:
                    state["velocity"] = torch.zeros_like(param)
                state["velocity"].mul_(group["momentum"]).add_(param.grad, alpha=-group["lr"])
                param.add_(param.grad, alpha=-group["lr"])
        return loss
