"""
Minimal ABIs: only the module functions/events the oracle touches,
plus the Chainlink aggregator and ERC20 decimals used for pricing.
"""

# Role whose holders are processed on every periodic refresh
DEFI_EXECUTE_ROLE = 1

MODULE_ABI = [
    {
        "type": "function",
        "name": "batchUpdate",
        "inputs": [
            {"name": "subAccount", "type": "address"},
            {"name": "newAllowance", "type": "uint256"},
            {"name": "tokens", "type": "address[]"},
            {"name": "balances", "type": "uint256[]"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "getSafeValue",
        "inputs": [],
        "outputs": [
            {"name": "totalValueUSD", "type": "uint256"},
            {"name": "lastUpdated", "type": "uint256"},
            {"name": "updateCount", "type": "uint256"},
        ],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getSpendingAllowance",
        "inputs": [{"name": "subAccount", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getAcquiredBalance",
        "inputs": [
            {"name": "subAccount", "type": "address"},
            {"name": "token", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getSubAccountLimits",
        "inputs": [{"name": "subAccount", "type": "address"}],
        "outputs": [
            {"name": "maxSpendingBps", "type": "uint256"},
            {"name": "windowDuration", "type": "uint256"},
        ],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getSubaccountsByRole",
        "inputs": [{"name": "roleId", "type": "uint16"}],
        "outputs": [{"name": "", "type": "address[]"}],
        "stateMutability": "view",
    },
    {
        "type": "event",
        "name": "ProtocolExecution",
        "anonymous": False,
        "inputs": [
            {"name": "subAccount", "type": "address", "indexed": True},
            {"name": "target", "type": "address", "indexed": True},
            {"name": "opType", "type": "uint8", "indexed": False},
            {"name": "tokensIn", "type": "address[]", "indexed": False},
            {"name": "amountsIn", "type": "uint256[]", "indexed": False},
            {"name": "tokensOut", "type": "address[]", "indexed": False},
            {"name": "amountsOut", "type": "uint256[]", "indexed": False},
            {"name": "spendingCost", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "TransferExecuted",
        "anonymous": False,
        "inputs": [
            {"name": "subAccount", "type": "address", "indexed": True},
            {"name": "token", "type": "address", "indexed": True},
            {"name": "recipient", "type": "address", "indexed": True},
            {"name": "amount", "type": "uint256", "indexed": False},
            {"name": "spendingCost", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "AcquiredBalanceUpdated",
        "anonymous": False,
        "inputs": [
            {"name": "subAccount", "type": "address", "indexed": True},
            {"name": "token", "type": "address", "indexed": True},
            {"name": "newBalance", "type": "uint256", "indexed": False},
        ],
    },
]

CHAINLINK_AGGREGATOR_ABI = [
    {
        "type": "function",
        "name": "latestRoundData",
        "inputs": [],
        "outputs": [
            {"name": "roundId", "type": "uint80"},
            {"name": "answer", "type": "int256"},
            {"name": "startedAt", "type": "uint256"},
            {"name": "updatedAt", "type": "uint256"},
            {"name": "answeredInRound", "type": "uint80"},
        ],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "decimals",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
    },
]

ERC20_DECIMALS_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
]
